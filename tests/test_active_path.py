import random
import uuid

import pytest
from sqlalchemy import select

from exceptions import NotFoundError
from models import Message
from models.messages import MessageRole
from schemas.threads import ThreadCreate
from services import ActivePathResolver, BranchService, MessageService, ThreadService


@pytest.fixture
def thread(db):
    return ThreadService.create_thread(db, ThreadCreate(title="Paths"))


def add(db, thread, parent_id, content, role=MessageRole.USER, activate=True):
    return MessageService.create_message(db, thread.id, parent_id, role, content, activate=activate)


def contents(db, thread):
    return [m.content for m in ActivePathResolver.get_active_path(db, thread.id)]


def test_empty_thread_has_empty_path(db, thread):
    assert ActivePathResolver.get_active_path(db, thread.id) == []
    assert ActivePathResolver.get_active_leaf(db, thread.id) is None


def test_unknown_thread_raises(db):
    with pytest.raises(NotFoundError):
        ActivePathResolver.get_active_path(db, uuid.uuid4())


def test_path_is_a_connected_root_to_leaf_walk(db, thread):
    u1 = add(db, thread, None, "u1")
    a1 = add(db, thread, u1.id, "a1", MessageRole.ASSISTANT)
    add(db, thread, u1.id, "a1b", MessageRole.ASSISTANT)
    MessageService.mark_active(db, a1)
    u2 = add(db, thread, a1.id, "u2")

    path = ActivePathResolver.get_active_path(db, thread.id)

    assert path[0].parent_id is None
    for parent, child in zip(path, path[1:]):
        assert child.parent_id == parent.id
    assert path[-1].id == u2.id
    assert MessageService.get_children(db, u2.id) == []


def test_missing_pointer_falls_back_to_latest_child(db, thread):
    u1 = add(db, thread, None, "u1")
    add(db, thread, u1.id, "old", MessageRole.ASSISTANT, activate=False)
    add(db, thread, u1.id, "new", MessageRole.ASSISTANT, activate=False)

    assert contents(db, thread) == ["u1", "new"]


def test_equal_timestamps_break_ties_by_id(db, thread):
    u1 = add(db, thread, None, "u1")
    first = add(db, thread, u1.id, "first", MessageRole.ASSISTANT, activate=False)
    second = add(db, thread, u1.id, "second", MessageRole.ASSISTANT, activate=False)
    second.created_at = first.created_at
    db.commit()

    assert contents(db, thread) == ["u1", "second"]
    assert contents(db, thread) == ["u1", "second"]


def test_stale_pointer_is_ignored(db, thread):
    u1 = add(db, thread, None, "u1")
    a1 = add(db, thread, u1.id, "a1", MessageRole.ASSISTANT)
    a2 = add(db, thread, u1.id, "a2", MessageRole.ASSISTANT, activate=False)
    db.get(Message, u1.id).active_child_id = 424242
    db.commit()

    assert ActivePathResolver.get_active_path(db, thread.id)[-1].id == a2.id
    assert a1.id < a2.id


def test_latest_root_is_active_without_pointer(db, thread):
    add(db, thread, None, "root one", activate=False)
    add(db, thread, None, "root two", activate=False)

    assert contents(db, thread) == ["root two"]


def test_path_reflects_writes_from_other_sessions(db, session_factory, thread):
    u1 = add(db, thread, None, "u1")
    assert contents(db, thread) == ["u1"]

    other = session_factory()
    try:
        MessageService.create_message(other, thread.id, u1.id, MessageRole.ASSISTANT, "a1")
    finally:
        other.close()

    assert contents(db, thread) == ["u1", "a1"]


def test_get_path_to_returns_ancestor_chain(db, thread):
    u1 = add(db, thread, None, "u1")
    a1 = add(db, thread, u1.id, "a1", MessageRole.ASSISTANT)
    add(db, thread, u1.id, "a1b", MessageRole.ASSISTANT)

    assert [m.content for m in ActivePathResolver.get_path_to(db, a1.id)] == ["u1", "a1"]


def assert_tree_and_path(db, thread):
    rows = db.execute(select(Message.id, Message.parent_id).where(Message.thread_id == thread.id)).all()
    ids = {message_id for message_id, _ in rows}
    assert all(parent_id is None or parent_id in ids for _, parent_id in rows)

    path = ActivePathResolver.get_active_path(db, thread.id)
    assert [m.id for m in ActivePathResolver.get_active_path(db, thread.id)] == [m.id for m in path]
    if not ids:
        assert path == []
        return path

    assert path[0].parent_id is None
    for parent, child in zip(path, path[1:]):
        assert child.parent_id == parent.id
    assert MessageService.get_children(db, path[-1].id) == []
    return path


@pytest.mark.parametrize("seed", [1, 7, 42, 2024])
def test_random_create_delete_switch_sequences_keep_invariants(db, thread, seed):
    rng = random.Random(seed)
    ids = []

    for step in range(120):
        action = rng.choice(["create", "create", "create", "delete", "switch"]) if ids else "create"

        if action == "create":
            parent_id = rng.choice(ids) if ids and rng.random() < 0.85 else None
            activate = rng.random() < 0.7
            message = add(db, thread, parent_id, f"m{step}", rng.choice(list(MessageRole)), activate=activate)
            message_id = message.id
            ids.append(message_id)
            path = assert_tree_and_path(db, thread)
            if activate:
                assert path[-1].id == message_id
        elif action == "delete":
            target = rng.choice(ids)
            deleted = set(MessageService.delete_subtree(db, thread.id, target))
            assert target in deleted
            ids = [i for i in ids if i not in deleted]
            assert_tree_and_path(db, thread)
        else:
            target = rng.choice(ids)
            BranchService.switch_branch(db, thread.id, target)
            path = assert_tree_and_path(db, thread)
            assert target in [m.id for m in path]

        remaining = set(db.scalars(select(Message.id).where(Message.thread_id == thread.id)))
        assert remaining == set(ids)
