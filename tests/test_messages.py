import uuid

import pytest

from exceptions import NotFoundError, ValidationError
from models import Message, MessageFile
from schemas.messages import AttachmentCreate
from schemas.threads import ThreadCreate
from services import ActivePathResolver, FileService, MessageService, ThreadService
from models.messages import MessageRole

USER = MessageRole.USER
ASSISTANT = MessageRole.ASSISTANT


@pytest.fixture
def thread(db):
    return ThreadService.create_thread(db, ThreadCreate(title="Test thread"))


def add(db, thread, parent, role=USER, content="text", **kwargs):
    parent_id = parent.id if parent is not None else None
    return MessageService.create_message(db, thread.id, parent_id, role, content, **kwargs)


def test_create_message_appends_to_active_path(db, thread):
    u1 = add(db, thread, None, content="Hi")
    a1 = add(db, thread, u1, ASSISTANT, "Hello")

    path = ActivePathResolver.get_active_path(db, thread.id)

    assert [m.id for m in path] == [u1.id, a1.id]
    assert db.get(Message, u1.id).active_child_id == a1.id


def test_create_message_with_foreign_parent_is_rejected(db, thread):
    other = ThreadService.create_thread(db, ThreadCreate(title="Other"))
    foreign = add(db, other, None)

    with pytest.raises(ValidationError):
        add(db, thread, foreign)

    assert db.query(Message).filter(Message.thread_id == thread.id).count() == 0


def test_create_message_in_unknown_thread(db):
    with pytest.raises(NotFoundError):
        MessageService.create_message(db, uuid.uuid4(), None, USER, "Hi")


def test_create_message_without_activation_keeps_path(db, thread):
    u1 = add(db, thread, None)
    a1 = add(db, thread, u1, ASSISTANT, "first")
    add(db, thread, u1, ASSISTANT, "draft", activate=False)

    path = ActivePathResolver.get_active_path(db, thread.id)

    assert path[-1].id == a1.id


def test_create_message_stores_usage_and_attachments(db, thread):
    attachment = AttachmentCreate(file_name="a.txt", mime_type="text/plain", data=b"abc")
    u1 = add(db, thread, None, attachments=[attachment])
    a1 = add(db, thread, u1, ASSISTANT, "ok", model="gpt-test",
             usage={"prompt_tokens": 1, "completion_tokens": 2, "total_tokens": 3})

    files = FileService.list_message_files(db, u1.id)
    assert [(f.file_name, f.size, f.blob) for f in files] == [("a.txt", 3, b"abc")]
    assert (a1.model, a1.prompt_tokens, a1.completion_tokens, a1.total_tokens) == ("gpt-test", 1, 2, 3)


def test_empty_attachment_is_rejected_before_write(db, thread):
    with pytest.raises(ValidationError):
        add(db, thread, None, attachments=[AttachmentCreate(file_name="a.txt", data=b"")])

    assert db.query(Message).count() == 0


def test_update_content_keeps_tree_shape(db, thread):
    u1 = add(db, thread, None, content="before",
             attachments=[AttachmentCreate(file_name="keep.txt", data=b"1"),
                          AttachmentCreate(file_name="drop.txt", data=b"2")])
    a1 = add(db, thread, u1, ASSISTANT, "reply")
    drop = [f for f in FileService.list_message_files(db, u1.id) if f.file_name == "drop.txt"][0]

    updated = MessageService.update_content(
        db, u1.id, "after", removed_file_ids=[drop.id],
        new_files=[AttachmentCreate(file_name="new.txt", data=b"3")]
    )

    assert updated.content == "after"
    assert updated.parent_id is None
    assert [f.file_name for f in FileService.list_message_files(db, u1.id)] == ["keep.txt", "new.txt"]
    assert [m.id for m in ActivePathResolver.get_active_path(db, thread.id)] == [u1.id, a1.id]


def test_update_content_of_missing_message(db):
    with pytest.raises(NotFoundError):
        MessageService.update_content(db, 999, "x")


def test_delete_subtree_removes_descendants_and_files(db, thread):
    u1 = add(db, thread, None)
    a1 = add(db, thread, u1, ASSISTANT)
    u2 = add(db, thread, a1, attachments=[AttachmentCreate(file_name="f.bin", data=b"x")])
    a2 = add(db, thread, u2, ASSISTANT)
    sibling = add(db, thread, u1, ASSISTANT, "other")
    # Deleted instances are detached from the session, so keep plain ids
    a1_id = a1.id
    doomed_ids = sorted([a1_id, u2.id, a2.id])
    kept_ids = {u1.id, sibling.id}

    deleted = MessageService.delete_subtree(db, thread.id, a1_id)

    assert sorted(deleted) == doomed_ids
    remaining = {m.id for m in db.query(Message).filter(Message.thread_id == thread.id)}
    assert remaining == kept_ids
    assert db.query(MessageFile).count() == 0
    # No orphan: every remaining parent still exists
    assert all(m.parent_id is None or m.parent_id in remaining
               for m in db.query(Message).filter(Message.thread_id == thread.id))


def test_delete_subtree_falls_back_to_latest_sibling(db, thread):
    u1 = add(db, thread, None)
    a1 = add(db, thread, u1, ASSISTANT, "one")
    a2 = add(db, thread, u1, ASSISTANT, "two")
    MessageService.mark_active(db, a1)

    MessageService.delete_subtree(db, thread.id, a1.id)

    assert db.get(Message, u1.id).active_child_id is None
    assert ActivePathResolver.get_active_path(db, thread.id)[-1].id == a2.id


def test_delete_subtree_is_idempotent(db, thread):
    u1 = add(db, thread, None)

    assert MessageService.delete_subtree(db, thread.id, u1.id) == [u1.id]
    assert MessageService.delete_subtree(db, thread.id, u1.id) == []
    assert ActivePathResolver.get_active_path(db, thread.id) == []


def test_delete_subtree_handles_deep_chains(db, thread):
    parent = None
    first = None
    for i in range(1200):
        parent = add(db, thread, parent, USER if i % 2 == 0 else ASSISTANT, str(i), activate=False)
        first = first or parent

    deleted = MessageService.delete_subtree(db, thread.id, first.id)

    assert len(deleted) == 1200
    assert db.query(Message).count() == 0


def test_children_are_ordered_by_creation(db, thread):
    u1 = add(db, thread, None)
    replies = [add(db, thread, u1, ASSISTANT, str(i)) for i in range(3)]

    assert [m.id for m in MessageService.get_children(db, u1.id)] == [m.id for m in replies]
