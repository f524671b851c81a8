"""
Todo 提取模块

从 TodoWrite 工具调用中提取任务列表并计算进度
"""

from typing import Any, Dict, List, Optional, Sequence

from .types import TodoItem, TodoProgress, TodoStatus

TODO_TOOL_NAME = "TodoWrite"


def normalize_todo_status(status: Any) -> TodoStatus:
    """归一化状态："done" 视为 completed，未知状态视为 pending"""
    if status in ("completed", "done"):
        return TodoStatus.COMPLETED
    if status == "in_progress":
        return TodoStatus.IN_PROGRESS
    return TodoStatus.PENDING


def extract_todos(content_blocks: Sequence[Dict[str, Any]]) -> Optional[List[TodoItem]]:
    """
    从内容块中提取第一个 TodoWrite 调用的条目

    Args:
        content_blocks: assistant 消息的内容块列表

    Returns:
        Todo 条目列表；消息中没有 TodoWrite 调用时返回 None
        （与空列表区分：空列表表示 todo 被清空）
    """
    for block in content_blocks:
        if not isinstance(block, dict):
            continue
        if block.get("type") != "tool_use" or block.get("name") != TODO_TOOL_NAME:
            continue

        tool_input = block.get("input") or {}
        todos = tool_input.get("todos") if isinstance(tool_input, dict) else None
        if isinstance(todos, list):
            return [
                TodoItem(
                    content=str(todo.get("content", "")),
                    status=normalize_todo_status(todo.get("status")),
                )
                for todo in todos
                if isinstance(todo, dict)
            ]
    return None


def get_todo_progress(todos: List[TodoItem]) -> TodoProgress:
    """根据 todo 列表计算进度快照"""
    return TodoProgress(
        items=list(todos),
        total=len(todos),
        completed=sum(1 for t in todos if t.status == TodoStatus.COMPLETED),
        in_progress=sum(1 for t in todos if t.status == TodoStatus.IN_PROGRESS),
        pending=sum(1 for t in todos if t.status == TodoStatus.PENDING),
    )


def empty_progress() -> TodoProgress:
    """空进度"""
    return TodoProgress()
