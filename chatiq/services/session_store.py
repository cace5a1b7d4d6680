# session_store.py
#
# Conversation Store Adapter: sessions and messages in Cloud Firestore.
#
#   artifacts/{app_id}/users/{uid}/sessions/{sessionId}
#   artifacts/{app_id}/users/{uid}/sessions/{sessionId}/messages/{messageId}
#
# All timestamps are store-assigned (SERVER_TIMESTAMP). Every SDK failure is
# re-raised as StorageFailure.

import functools
from typing import Callable, List, Optional

from google.api_core import exceptions as gcp_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import firestore
from google.oauth2 import service_account as service_account_credentials

from chatiq.models.chat import Message, Session, UNTITLED
from chatiq.utils.config import DEFAULT_APP_ID
from chatiq.utils.errors import ConfigurationFailure, StorageFailure
from chatiq.utils.logger import logger

# Firestore rejects batches with more than 500 writes
BATCH_LIMIT = 500


def _storage_call(action: str):
    """Convert SDK errors raised by the wrapped call into StorageFailure."""
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except (gcp_exceptions.GoogleAPIError, auth_exceptions.GoogleAuthError) as e:
                logger.error(f"❌ Firestore error while trying to {action}: {e}", exc_info=True)
                raise StorageFailure(f"Could not {action}.") from e
        return wrapper
    return decorator


def session_from_snapshot(doc) -> Session:
    data = doc.to_dict() or {}
    return Session(
        id=doc.id,
        title=data.get("title") or UNTITLED,
        created_at=data.get("createdAt"),
        last_activity=data.get("lastActivity"),
    )


def message_from_snapshot(doc, session_id: str = None) -> Message:
    data = doc.to_dict() or {}
    return Message(
        id=doc.id,
        session_id=session_id,
        sender=data.get("sender", "bot"),
        type=data.get("type", "text"),
        content=data.get("content", ""),
        mime_type=data.get("mimeType"),
        timestamp=data.get("timestamp"),
    )


class FirestoreSessionStore:
    """
    Ordered document collections scoped by user id, with live change
    subscriptions. Subscriptions return an unsubscribe callable.
    """

    def __init__(self, client: firestore.Client = None, app_id: str = DEFAULT_APP_ID):
        self.db = client or firestore.Client()
        self.app_id = app_id

    @classmethod
    def from_service_account(cls, service_account: dict, app_id: str = DEFAULT_APP_ID) -> "FirestoreSessionStore":
        try:
            creds = service_account_credentials.Credentials.from_service_account_info(service_account)
        except ValueError as e:
            raise ConfigurationFailure(f"Invalid Firebase credentials: {e}")
        client = firestore.Client(project=service_account.get("project_id"), credentials=creds)
        logger.info(f"✅ Firestore client initialized (app id '{app_id}')")
        return cls(client, app_id=app_id)

    # --- Paths ---

    def sessions_path(self, uid: str) -> str:
        return f"artifacts/{self.app_id}/users/{uid}/sessions"

    def messages_path(self, uid: str, session_id: str) -> str:
        return f"{self.sessions_path(uid)}/{session_id}/messages"

    def _session_ref(self, uid: str, session_id: str):
        return self.db.collection(self.sessions_path(uid)).document(session_id)

    def _messages(self, uid: str, session_id: str):
        return self.db.collection(self.messages_path(uid, session_id))

    # --- Sessions ---

    @_storage_call("create chat session")
    def create_session(self, uid: str, title: str) -> str:
        _, session_ref = self.db.collection(self.sessions_path(uid)).add({
            "title": title,
            "createdAt": firestore.SERVER_TIMESTAMP,
            "lastActivity": firestore.SERVER_TIMESTAMP,
        })
        logger.info(f"✅ Created session {session_ref.id} for user {uid}")
        return session_ref.id

    @_storage_call("load chat session")
    def get_session(self, uid: str, session_id: str) -> Optional[Session]:
        doc = self._session_ref(uid, session_id).get()
        if not doc.exists:
            return None
        return session_from_snapshot(doc)

    @_storage_call("update chat session")
    def update_session(self, uid: str, session_id: str, fields: dict):
        self._session_ref(uid, session_id).update(fields)

    def touch_session(self, uid: str, session_id: str):
        """Bump lastActivity to the server time."""
        self.update_session(uid, session_id, {"lastActivity": firestore.SERVER_TIMESTAMP})

    @_storage_call("delete chat session")
    def delete_session(self, uid: str, session_id: str):
        self._session_ref(uid, session_id).delete()
        logger.info(f"🗑️ Deleted session {session_id} for user {uid}")

    # --- Messages ---

    @_storage_call("save message")
    def add_message(self, uid: str, session_id: str, message: Message) -> str:
        payload = {
            "sender": message.sender,
            "type": message.type,
            "content": message.content,
            "timestamp": firestore.SERVER_TIMESTAMP,
        }
        if message.mime_type:
            payload["mimeType"] = message.mime_type
        _, message_ref = self._messages(uid, session_id).add(payload)
        return message_ref.id

    @_storage_call("load messages")
    def recent_messages(self, uid: str, session_id: str, limit: int = 10,
                        descending: bool = True) -> List[Message]:
        direction = firestore.Query.DESCENDING if descending else firestore.Query.ASCENDING
        query = self._messages(uid, session_id).order_by("timestamp", direction=direction).limit(limit)
        return [message_from_snapshot(doc, session_id) for doc in query.stream()]

    @_storage_call("list messages")
    def list_message_ids(self, uid: str, session_id: str) -> List[str]:
        return [doc.id for doc in self._messages(uid, session_id).stream()]

    @_storage_call("delete messages")
    def batch_delete_messages(self, uid: str, session_id: str, message_ids: List[str]):
        messages = self._messages(uid, session_id)
        for start in range(0, len(message_ids), BATCH_LIMIT):
            batch = self.db.batch()
            for message_id in message_ids[start:start + BATCH_LIMIT]:
                batch.delete(messages.document(message_id))
            batch.commit()
        logger.debug(f"Deleted {len(message_ids)} messages from session {session_id}")

    # --- Live subscriptions ---

    def _subscribe(self, query, convert: Callable, on_change: Callable, on_error: Callable,
                   description: str) -> Callable[[], None]:
        def callback(docs, changes, read_time):
            try:
                on_change([convert(doc) for doc in docs])
            except Exception as e:
                logger.error(f"❌ Error handling {description} snapshot: {e}", exc_info=True)
                on_error(StorageFailure(f"Could not load {description}."))

        try:
            watch = query.on_snapshot(callback)
        except (gcp_exceptions.GoogleAPIError, auth_exceptions.GoogleAuthError) as e:
            logger.error(f"❌ Could not subscribe to {description}: {e}", exc_info=True)
            raise StorageFailure(f"Could not load {description}.") from e
        return watch.unsubscribe

    def subscribe_sessions(self, uid: str, on_change: Callable[[List[Session]], None],
                           on_error: Callable[[Exception], None]) -> Callable[[], None]:
        query = self.db.collection(self.sessions_path(uid)).order_by(
            "lastActivity", direction=firestore.Query.DESCENDING
        )
        return self._subscribe(query, session_from_snapshot, on_change, on_error, "chat history")

    def subscribe_messages(self, uid: str, session_id: str, on_change: Callable[[List[Message]], None],
                           on_error: Callable[[Exception], None]) -> Callable[[], None]:
        query = self._messages(uid, session_id).order_by("timestamp", direction=firestore.Query.ASCENDING)
        return self._subscribe(
            query, lambda doc: message_from_snapshot(doc, session_id), on_change, on_error, "messages"
        )
