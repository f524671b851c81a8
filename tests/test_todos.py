"""
Unit tests for todo extraction and progress
"""

from agent_broker.todos import extract_todos, get_todo_progress, normalize_todo_status
from agent_broker.types import TodoItem, TodoStatus


def _todo_write(todos):
    return {"type": "tool_use", "id": "t1", "name": "TodoWrite", "input": {"todos": todos}}


def test_normalize_status():
    assert normalize_todo_status("done") == TodoStatus.COMPLETED
    assert normalize_todo_status("completed") == TodoStatus.COMPLETED
    assert normalize_todo_status("in_progress") == TodoStatus.IN_PROGRESS
    assert normalize_todo_status("pending") == TodoStatus.PENDING
    assert normalize_todo_status("blocked") == TodoStatus.PENDING
    assert normalize_todo_status(None) == TodoStatus.PENDING


def test_extract_todos_from_first_todo_write():
    blocks = [
        {"type": "text", "text": "planning"},
        _todo_write([
            {"content": "A", "status": "done"},
            {"content": "B", "status": "in_progress"},
            {"content": "C"},
        ]),
        _todo_write([{"content": "ignored", "status": "pending"}]),
    ]

    todos = extract_todos(blocks)

    assert todos == [
        TodoItem("A", TodoStatus.COMPLETED),
        TodoItem("B", TodoStatus.IN_PROGRESS),
        TodoItem("C", TodoStatus.PENDING),
    ]


def test_extract_todos_without_todo_write_returns_none():
    blocks = [
        {"type": "text", "text": "hi"},
        {"type": "tool_use", "id": "t1", "name": "Bash", "input": {"command": "ls"}},
    ]
    assert extract_todos(blocks) is None


def test_extract_todos_empty_list_is_not_none():
    assert extract_todos([_todo_write([])]) == []


def test_progress_counts():
    progress = get_todo_progress([
        TodoItem("A", TodoStatus.COMPLETED),
        TodoItem("B", TodoStatus.IN_PROGRESS),
        TodoItem("C", TodoStatus.PENDING),
        TodoItem("D", TodoStatus.PENDING),
    ])

    assert progress.total == 4
    assert progress.completed == 1
    assert progress.in_progress == 1
    assert progress.pending == 2
    assert progress.total == progress.completed + progress.in_progress + progress.pending


def test_progress_to_dict():
    progress = get_todo_progress([TodoItem("A", TodoStatus.COMPLETED)])
    assert progress.to_dict() == {
        "todos": [{"content": "A", "status": "completed"}],
        "total": 1,
        "completed": 1,
        "inProgress": 0,
        "pending": 0,
    }
