"""
共享测试夹具
"""

import pytest

from agent_broker.config_manager import CONFIG_PATH_ENV, ENV_OVERRIDES


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """清除会覆盖配置的环境变量"""
    for _, _, env_name, _ in ENV_OVERRIDES:
        monkeypatch.delenv(env_name, raising=False)
    monkeypatch.delenv(CONFIG_PATH_ENV, raising=False)


@pytest.fixture
def broker_config(tmp_path):
    """写入最小配置文件，工作目录和会话记录都在 tmp_path 下"""
    config_path = tmp_path / "broker.yaml"
    config_path.write_text(
        "sessions:\n"
        "  strategy: local\n"
        f"  base_dir: \"{tmp_path / 'sessions'}\"\n"
        "transcript:\n"
        f"  base_dir: \"{tmp_path / 'transcripts'}\"\n",
        encoding="utf-8",
    )
    return config_path
