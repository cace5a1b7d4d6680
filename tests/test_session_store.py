from unittest.mock import MagicMock

import pytest
from google.api_core import exceptions as gcp_exceptions
from google.cloud import firestore

from chatiq.models.chat import Message
from chatiq.services.session_store import BATCH_LIMIT, FirestoreSessionStore
from chatiq.utils.errors import StorageFailure


def make_store():
    client = MagicMock()
    return FirestoreSessionStore(client=client, app_id="test-app"), client


def snapshot(doc_id, data):
    doc = MagicMock(id=doc_id)
    doc.exists = True
    doc.to_dict.return_value = data
    return doc


def test_paths_are_scoped_by_user():
    store, _ = make_store()
    assert store.sessions_path("alice") == "artifacts/test-app/users/alice/sessions"
    assert store.messages_path("alice", "s1") == "artifacts/test-app/users/alice/sessions/s1/messages"


def test_create_session_uses_server_timestamps():
    store, client = make_store()
    client.collection.return_value.add.return_value = (None, MagicMock(id="s1"))

    assert store.create_session("alice", "hello") == "s1"

    client.collection.assert_called_with("artifacts/test-app/users/alice/sessions")
    client.collection.return_value.add.assert_called_once_with({
        "title": "hello",
        "createdAt": firestore.SERVER_TIMESTAMP,
        "lastActivity": firestore.SERVER_TIMESTAMP,
    })


def test_get_session_missing_returns_none():
    store, client = make_store()
    missing = MagicMock()
    missing.exists = False
    client.collection.return_value.document.return_value.get.return_value = missing

    assert store.get_session("alice", "gone") is None


def test_get_session_maps_fields():
    store, client = make_store()
    client.collection.return_value.document.return_value.get.return_value = snapshot(
        "s1", {"title": "hello", "createdAt": None, "lastActivity": None}
    )

    session = store.get_session("alice", "s1")

    assert session.id == "s1"
    assert session.title == "hello"


def test_untitled_session_gets_default_title():
    store, client = make_store()
    client.collection.return_value.document.return_value.get.return_value = snapshot("s1", {})
    assert store.get_session("alice", "s1").title == "Untitled Chat"


def test_add_image_message_includes_mime_type():
    store, client = make_store()
    client.collection.return_value.add.return_value = (None, MagicMock(id="m1"))
    message = Message(sender="user", type="image", content="aGVsbG8=", mime_type="image/png")

    assert store.add_message("alice", "s1", message) == "m1"

    client.collection.assert_called_with("artifacts/test-app/users/alice/sessions/s1/messages")
    client.collection.return_value.add.assert_called_once_with({
        "sender": "user",
        "type": "image",
        "content": "aGVsbG8=",
        "mimeType": "image/png",
        "timestamp": firestore.SERVER_TIMESTAMP,
    })


def test_touch_session_updates_last_activity():
    store, client = make_store()
    store.touch_session("alice", "s1")
    client.collection.return_value.document.return_value.update.assert_called_once_with(
        {"lastActivity": firestore.SERVER_TIMESTAMP}
    )


def test_recent_messages_query_is_ordered_and_limited():
    store, client = make_store()
    query = client.collection.return_value.order_by.return_value.limit.return_value
    query.stream.return_value = [
        snapshot("m2", {"sender": "bot", "type": "text", "content": "later"}),
        snapshot("m1", {"sender": "user", "type": "text", "content": "earlier"}),
    ]

    messages = store.recent_messages("alice", "s1", limit=10)

    client.collection.return_value.order_by.assert_called_once_with(
        "timestamp", direction=firestore.Query.DESCENDING
    )
    client.collection.return_value.order_by.return_value.limit.assert_called_once_with(10)
    assert [(m.id, m.session_id, m.content) for m in messages] == [("m2", "s1", "later"), ("m1", "s1", "earlier")]


def test_batch_delete_splits_large_deletes():
    store, client = make_store()
    batch = client.batch.return_value

    store.batch_delete_messages("alice", "s1", [f"m{i}" for i in range(BATCH_LIMIT + 1)])

    assert batch.delete.call_count == BATCH_LIMIT + 1
    assert batch.commit.call_count == 2


def test_sdk_errors_become_storage_failures():
    store, client = make_store()
    client.collection.return_value.add.side_effect = gcp_exceptions.ServiceUnavailable("firestore down")

    with pytest.raises(StorageFailure) as excinfo:
        store.create_session("alice", "hello")

    assert excinfo.value.message == "Could not create chat session."


def test_subscribe_messages_delivers_ordered_models():
    store, client = make_store()
    query = client.collection.return_value.order_by.return_value
    watch = query.on_snapshot.return_value
    received = []

    unsubscribe = store.subscribe_messages("alice", "s1", received.append, pytest.fail)

    client.collection.return_value.order_by.assert_called_once_with(
        "timestamp", direction=firestore.Query.ASCENDING
    )
    callback = query.on_snapshot.call_args[0][0]
    callback([snapshot("m1", {"sender": "user", "type": "text", "content": "hi"})], [], None)

    assert received[0][0].content == "hi"
    assert unsubscribe == watch.unsubscribe


def test_subscribe_sessions_reports_bad_snapshots():
    store, client = make_store()
    query = client.collection.return_value.order_by.return_value
    errors = []
    store.subscribe_sessions("alice", lambda sessions: None, errors.append)

    client.collection.return_value.order_by.assert_called_once_with(
        "lastActivity", direction=firestore.Query.DESCENDING
    )
    broken = MagicMock(id="s1")
    broken.to_dict.side_effect = RuntimeError("corrupt document")
    query.on_snapshot.call_args[0][0]([broken], [], None)

    assert isinstance(errors[0], StorageFailure)
