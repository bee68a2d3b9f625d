"""
Shared fixtures for the chat tree tests.

Log files are redirected into ``tmp_path`` so tests never touch the
working directory.
"""

import pytest

import ai
from chat_tree import ChatTree


@pytest.fixture(autouse=True)
def isolated_logs(tmp_path, monkeypatch):
    monkeypatch.setattr(ai, "_PROMPT_LOG_PATH", tmp_path / "prompt.log")
    monkeypatch.setattr(ai, "_CONNECTION_LOG_PATH", tmp_path / "connection.log")
    return tmp_path


@pytest.fixture
def tree() -> ChatTree:
    return ChatTree()


@pytest.fixture
def branched_tree() -> ChatTree:
    """Two roots; the second has two assistant branches, the first of which has a child.

    1 system  "Welcome"
    2 user    "Hi"
    ├─ 3 assistant "Hello"
    │  └─ 5 user "How are you?"
    └─ 4 assistant "Hey there"
    """
    tree = ChatTree()
    tree.create_node("system", "Welcome")
    tree.create_node("user", "Hi")
    tree.create_node("assistant", "Hello", 2)
    tree.create_node("assistant", "Hey there", 2)
    tree.create_node("user", "How are you?", 3)
    return tree
