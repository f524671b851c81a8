"""
HTTP API

aiohttp 应用工厂和命令行入口。
"""

from .server import AGENT_SYSTEM_KEY, create_app, create_routes, main

__all__ = [
    "AGENT_SYSTEM_KEY",
    "create_app",
    "create_routes",
    "main",
]
