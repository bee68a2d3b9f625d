"""
Tests for the session state object: single-flight requests, edit policy
routing and reply attachment.
"""

import asyncio
import threading

import pytest

from chat_session import WELCOME_MESSAGE, ChatSession, RequestState
from errors import Busy, HttpError, InvalidInput, MalformedResponse


class FakeModel:
    """Records prompts and answers with a canned reply."""

    def __init__(self, reply="Hello!", error=None):
        self.reply = reply
        self.error = error
        self.prompts = []

    def __call__(self, prompt):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture
def model():
    return FakeModel()


@pytest.fixture
def session(model):
    return ChatSession(complete=model, timeout=5)


async def wait_until_idle(session, attempts=200):
    for _ in range(attempts):
        if not session.busy:
            return
        await asyncio.sleep(0.01)
    raise AssertionError("session never returned to idle")


def snapshot(session):
    tree = session.tree
    return (
        sorted(tree.nodes),
        list(tree.root_ids),
        {node.id: list(node.children) for node in tree.all_nodes()},
        tree.selected_id,
    )


class TestSeed:
    def test_welcome_is_selected_system_root(self, session):
        node_id = session.seed_welcome()
        node = session.tree.get_node(node_id)
        assert node.role == "system"
        assert node.content == WELCOME_MESSAGE
        assert session.tree.selected_id == node_id
        assert session.state is RequestState.IDLE


class TestSendMessage:
    def test_creates_selected_user_root_and_reserves_request(self, session):
        session.seed_welcome()
        node_id = session.send_message("Hi")
        node = session.tree.get_node(node_id)
        assert node.role == "user"
        assert node.is_root
        assert session.tree.selected_id == node_id
        assert session.busy

    def test_second_send_while_busy_is_rejected(self, session):
        session.send_message("first")
        before = snapshot(session)
        with pytest.raises(Busy):
            session.send_message("second")
        assert snapshot(session) == before

    def test_empty_message_is_rejected_and_stays_idle(self, session):
        with pytest.raises(InvalidInput):
            session.send_message("")
        assert not session.busy


class TestSubmitEdit:
    def test_unchanged_content_triggers_no_request(self, session, model):
        node_id = session.send_message("Hi")
        asyncio.run(session.fetch_reply(node_id, "Hi"))
        model.prompts.clear()
        before = snapshot(session)
        assert session.submit_edit(node_id, "Hi") is None
        assert not session.busy
        assert snapshot(session) == before
        assert model.prompts == []

    def test_changed_content_branches_and_reserves_request(self, session):
        node_id = session.send_message("Hi")
        asyncio.run(session.fetch_reply(node_id, "Hi"))
        new_id = session.submit_edit(node_id, "Hello")
        assert new_id is not None
        assert session.tree.root_ids == [node_id, new_id]
        assert session.tree.selected_id == new_id
        assert session.busy

    def test_system_messages_are_not_editable(self, session):
        welcome = session.seed_welcome()
        with pytest.raises(InvalidInput):
            session.submit_edit(welcome, "Changed")
        assert len(session.tree) == 1
        assert not session.busy

    def test_unknown_node(self, session):
        with pytest.raises(InvalidInput):
            session.submit_edit(7, "text")

    def test_edit_while_busy_is_rejected(self, session):
        node_id = session.send_message("Hi")
        before = snapshot(session)
        with pytest.raises(Busy):
            session.submit_edit(node_id, "Hello")
        assert snapshot(session) == before


class TestFetchReply:
    def test_reply_attached_as_selected_child(self, session, model):
        node_id = session.send_message("Hi")
        reply_id = asyncio.run(session.fetch_reply(node_id, "Hi"))
        reply = session.tree.get_node(reply_id)
        assert reply.role == "assistant"
        assert reply.content == "Hello!"
        assert reply.parent_id == node_id
        assert session.tree.selected_id == reply_id
        assert model.prompts == ["Hi"]
        assert session.state is RequestState.IDLE

    def test_requires_a_reserved_request(self, session):
        node_id = session.tree.create_node("user", "Hi")
        with pytest.raises(RuntimeError):
            asyncio.run(session.fetch_reply(node_id, "Hi"))

    @pytest.mark.parametrize("failure", [HttpError(500), MalformedResponse("no content")])
    def test_model_errors_leave_tree_unchanged(self, model, session, failure):
        model.error = failure
        node_id = session.send_message("Hi")
        before = snapshot(session)
        with pytest.raises(type(failure)):
            asyncio.run(session.fetch_reply(node_id, "Hi"))
        assert snapshot(session) == before
        assert session.state is RequestState.IDLE

    def test_timeout_leaves_tree_unchanged(self):
        release = threading.Event()

        def slow(prompt):
            release.wait(timeout=5)
            return "late"

        session = ChatSession(complete=slow, timeout=0.05)

        async def scenario():
            node_id = session.send_message("Hi")
            before = snapshot(session)
            with pytest.raises(asyncio.TimeoutError):
                await session.fetch_reply(node_id, "Hi")
            assert snapshot(session) == before
            release.set()
            await wait_until_idle(session)

        asyncio.run(scenario())
        assert len(session.tree) == 1
        assert not session.busy

    def test_timed_out_request_holds_the_slot_until_it_returns(self):
        release = threading.Event()
        in_flight = []

        def slow(prompt):
            in_flight.append(prompt)
            release.wait(timeout=5)
            in_flight.remove(prompt)
            return "late"

        session = ChatSession(complete=slow, timeout=0.05)

        async def scenario():
            first = session.send_message("first")
            with pytest.raises(asyncio.TimeoutError):
                await session.fetch_reply(first, "first")
            assert session.busy
            before = snapshot(session)
            with pytest.raises(Busy):
                session.send_message("second")
            assert snapshot(session) == before
            assert in_flight == ["first"]

            release.set()
            await wait_until_idle(session)
            assert in_flight == []
            second = session.send_message("second")
            return await session.fetch_reply(second, "second")

        reply_id = asyncio.run(scenario())
        reply = session.tree.get_node(reply_id)
        assert reply.content == "late"
        assert reply.parent_id == 2
        assert session.tree.get_node(1).children == []

    def test_abandoned_failure_still_releases_the_slot(self):
        release = threading.Event()

        def failing(prompt):
            release.wait(timeout=5)
            raise HttpError(502)

        session = ChatSession(complete=failing, timeout=0.05)

        async def scenario():
            node_id = session.send_message("Hi")
            with pytest.raises(asyncio.TimeoutError):
                await session.fetch_reply(node_id, "Hi")
            assert session.busy
            release.set()
            await wait_until_idle(session)

        asyncio.run(scenario())
        assert not session.busy

    def test_back_to_back_requests_are_single_flight(self):
        release = threading.Event()

        def blocking(prompt):
            release.wait(timeout=5)
            return "done"

        session = ChatSession(complete=blocking, timeout=10)

        async def scenario():
            node_id = session.send_message("first")
            task = asyncio.create_task(session.fetch_reply(node_id, "first"))
            await asyncio.sleep(0.01)
            before = snapshot(session)
            with pytest.raises(Busy):
                session.send_message("second")
            assert snapshot(session) == before
            release.set()
            return await task

        reply_id = asyncio.run(scenario())
        assert session.tree.get_node(reply_id).parent_id == 1
        assert len(session.tree) == 2
        assert not session.busy
