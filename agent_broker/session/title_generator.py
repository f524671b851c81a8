"""会话标题生成"""

import re
from typing import Any, Dict, Optional

from ..config_manager import DEFAULT_TITLE_MODEL
from ..logging_config import get_logger
from ..run_query import QueryFn, run_query
from ..types import AgentQueryConfig

logger = get_logger(__name__)

RESPONSE_SNIPPET_CHARS = 500


def build_title_prompt(user_prompt: str, assistant_response: str) -> str:
    """构建标题生成提示词（回复只取前 500 个字符）"""
    return "\n".join([
        "Generate a pithy, concise title (max 6 words) that summarizes this conversation.",
        "Return ONLY the title text, nothing else. No quotes, no punctuation at the end.",
        "",
        f"User: {user_prompt}",
        "",
        f"Assistant: {assistant_response[:RESPONSE_SNIPPET_CHARS]}",
    ])


def clean_title(text: str) -> str:
    """去掉首尾空白和包裹的引号"""
    return re.sub(r"^[\"']|[\"']$", "", text.strip())


async def generate_session_title(
    user_prompt: str,
    assistant_response: str,
    model: str = DEFAULT_TITLE_MODEL,
    query_fn: Optional[QueryFn] = None,
    agent_config: Optional[Dict[str, Any]] = None
) -> str:
    """
    用单次查询生成会话标题（max_turns=1，不允许工具）

    Args:
        user_prompt: 用户的第一条消息
        assistant_response: assistant 的回复
        model: 标题模型
        query_fn: SDK query 函数（测试时可替换）
        agent_config: 配置中的 agent 段

    Returns:
        标题文本
    """
    result = await run_query(
        AgentQueryConfig(
            prompt=build_title_prompt(user_prompt, assistant_response),
            model=model,
            max_turns=1,
            allowed_tools=[],
        ),
        query_fn=query_fn,
        agent_config=agent_config,
    )
    title = clean_title(result.text)
    logger.debug(f"生成会话标题: {title!r}")
    return title
