"""
工作目录清理工具（仅 local 策略）

用法:
    python scripts/cleanup_workspaces.py [--config=broker.yaml] [--dry-run] [--days=30]
"""

import sys
import argparse

from agent_broker.config_manager import ConfigManager
from agent_broker.error_handling import ConfigError
from agent_broker.logging_config import get_logger
from agent_broker.types import SessionStrategy
from agent_broker.workspace import LocalEnvironmentManager

logger = get_logger(__name__)


def main():
    parser = argparse.ArgumentParser(description="清理过期的工作目录")
    parser.add_argument("--config", help="配置文件路径（默认 broker.yaml）")
    parser.add_argument("--dry-run", action="store_true", help="预览模式，不实际删除")
    parser.add_argument("--days", type=int, help="保留天数（覆盖配置）")

    args = parser.parse_args()

    try:
        config_mgr = ConfigManager(args.config)
        sessions_config = config_mgr.sessions
    except ConfigError as e:
        print(f"错误: 加载配置失败: {e}")
        sys.exit(1)

    if sessions_config["strategy"] != SessionStrategy.LOCAL.value:
        print(f"当前会话策略为 {sessions_config['strategy']}，只有 local 策略需要清理工作目录")
        sys.exit(0)

    manager = LocalEnvironmentManager(
        base_dir=sessions_config["base_dir"],
        retention_days=sessions_config["retention_days"],
    )

    # 确定保留天数
    retention_days = args.days or sessions_config["retention_days"]

    print("=" * 60)
    print("工作目录清理工具")
    print("=" * 60)
    print(f"目录: {manager.base_dir}")
    print(f"保留天数: {retention_days}")
    print(f"模式: {'预览' if args.dry_run else '执行'}")
    print("=" * 60)
    print()

    if args.dry_run:
        print("⚠️  预览模式：不会实际删除任何文件")
        print()

    try:
        report = manager.cleanup_expired(retention_days, dry_run=args.dry_run)
    except OSError as e:
        print(f"错误: 清理失败: {e}")
        logger.error(f"清理失败: {e}", exc_info=True)
        sys.exit(1)

    # 输出报告
    print("预览完成！" if args.dry_run else "清理完成！")
    print()
    print(f"扫描: {report['scanned']} 个工作目录")
    print(f"{'将删除' if args.dry_run else '删除'}: {report['deleted']} 个")
    print(f"失败: {report['failed']} 个")
    print(f"{'可释放' if args.dry_run else '释放'}空间: {report['total_size_mb']:.2f} MB")

    if report["deleted_envs"]:
        print()
        print("过期的工作目录:")
        for item in report["deleted_envs"]:
            print(f"  - {item['env_id']} (年龄: {item['age_days']} 天, 大小: {item['size_mb']:.2f} MB)")


if __name__ == "__main__":
    main()
