import itertools
from datetime import datetime, timedelta, timezone

import pytest

from chatiq.core.pointer import TabPointerStore
from chatiq.core.session_sync import ChatContext, SessionSynchronizer
from chatiq.core.view import BufferedChatView
from chatiq.models.chat import Message, Session, UserIdentity
from chatiq.services.firebase_auth import IdentityProvider
from chatiq.utils.errors import AuthFailure, StorageFailure

EPOCH = datetime(2026, 1, 1, tzinfo=timezone.utc)


class FakeStore:
    """In-memory stand-in for FirestoreSessionStore with synchronous listeners."""

    def __init__(self):
        self.sessions = {}
        self.messages = {}
        self.fail = set()
        self._clock = itertools.count(1)
        self._ids = itertools.count(1)
        self._session_listeners = {}
        self._message_listeners = {}
        self.calls = []

    def _now(self):
        return EPOCH + timedelta(seconds=next(self._clock))

    def _check(self, operation):
        self.calls.append(operation)
        if operation in self.fail:
            raise StorageFailure(f"{operation} failed")

    # --- Sessions ---

    def create_session(self, uid, title):
        self._check("create_session")
        session_id = f"s{next(self._ids)}"
        now = self._now()
        self.sessions[(uid, session_id)] = Session(id=session_id, title=title, created_at=now, last_activity=now)
        self.messages[(uid, session_id)] = []
        self._notify_sessions(uid)
        return session_id

    def get_session(self, uid, session_id):
        self._check("get_session")
        return self.sessions.get((uid, session_id))

    def update_session(self, uid, session_id, fields):
        self._check("update_session")
        session = self.sessions[(uid, session_id)]
        self.sessions[(uid, session_id)] = session.model_copy(update=fields)
        self._notify_sessions(uid)

    def touch_session(self, uid, session_id):
        self.update_session(uid, session_id, {"last_activity": self._now()})

    def delete_session(self, uid, session_id):
        self._check("delete_session")
        # Like Firestore, deleting the session document leaves its messages behind
        self.sessions.pop((uid, session_id), None)
        self._notify_sessions(uid)

    # --- Messages ---

    def add_message(self, uid, session_id, message):
        self._check("add_message")
        stored = message.model_copy(update={
            "id": f"m{next(self._ids)}",
            "session_id": session_id,
            "timestamp": self._now(),
        })
        self.messages.setdefault((uid, session_id), []).append(stored)
        self._notify_messages(uid, session_id)
        return stored.id

    def recent_messages(self, uid, session_id, limit=10, descending=True):
        self._check("recent_messages")
        ordered = sorted(self.messages.get((uid, session_id), []), key=lambda m: m.timestamp,
                         reverse=descending)
        return ordered[:limit]

    def list_message_ids(self, uid, session_id):
        self._check("list_message_ids")
        return [m.id for m in self.messages.get((uid, session_id), [])]

    def batch_delete_messages(self, uid, session_id, message_ids):
        self._check("batch_delete_messages")
        doomed = set(message_ids)
        remaining = [m for m in self.messages.get((uid, session_id), []) if m.id not in doomed]
        self.messages[(uid, session_id)] = remaining
        self._notify_messages(uid, session_id)

    # --- Listeners ---

    def subscribe_sessions(self, uid, on_change, on_error):
        self._check("subscribe_sessions")
        handle = next(self._ids)
        self._session_listeners[handle] = (uid, on_change)
        on_change(self._ordered_sessions(uid))
        return lambda: self._session_listeners.pop(handle, None)

    def subscribe_messages(self, uid, session_id, on_change, on_error):
        self._check("subscribe_messages")
        handle = next(self._ids)
        self._message_listeners[handle] = (uid, session_id, on_change)
        on_change(self._ordered_messages(uid, session_id))
        return lambda: self._message_listeners.pop(handle, None)

    @property
    def active_message_listeners(self):
        return len(self._message_listeners)

    @property
    def active_session_listeners(self):
        return len(self._session_listeners)

    def _ordered_sessions(self, uid):
        owned = [s for (owner, _), s in self.sessions.items() if owner == uid]
        return sorted(owned, key=lambda s: s.last_activity, reverse=True)

    def _ordered_messages(self, uid, session_id):
        return sorted(self.messages.get((uid, session_id), []), key=lambda m: m.timestamp)

    def _notify_sessions(self, uid):
        for owner, on_change in list(self._session_listeners.values()):
            if owner == uid:
                on_change(self._ordered_sessions(uid))

    def _notify_messages(self, uid, session_id):
        for owner, sid, on_change in list(self._message_listeners.values()):
            if owner == uid and sid == session_id:
                on_change(self._ordered_messages(uid, session_id))

    def seed_messages(self, uid, session_id, messages):
        for message in messages:
            self.add_message(uid, session_id, message)


class FakeModel:
    """Records every request; replies with `reply` or raises `error`."""

    def __init__(self, reply="Hello from Gemini!"):
        self.reply = reply
        self.error = None
        self.requests = []
        self.before_reply = None

    async def generate(self, turns):
        self.requests.append(turns)
        if self.before_reply is not None:
            await self.before_reply()
        if self.error is not None:
            raise self.error
        return self.reply


class FakeIdentityProvider(IdentityProvider):
    """Accepts tokens of the form 'token-<uid>'."""

    def __init__(self, names=None):
        super().__init__(app=None)
        self.names = names or {}
        self.revoked = set()

    def verify(self, id_token):
        if not id_token or not id_token.startswith("token-"):
            raise AuthFailure("Sign-in failed: invalid token")
        uid = id_token[len("token-"):]
        if uid in self.revoked:
            raise AuthFailure("Sign-in failed: token revoked")
        return UserIdentity(uid=uid, display_name=self.names.get(uid, "User"))

    def sign_out(self, uid):
        self.revoked.add(uid)
        self._emit(uid, None)


ALICE = UserIdentity(uid="alice", display_name="Alice")


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def model():
    return FakeModel()


@pytest.fixture
def pointers():
    return TabPointerStore()


@pytest.fixture
def view():
    return BufferedChatView()


@pytest.fixture
def context(store, pointers, view):
    return ChatContext(store=store, pointer=pointers.mirror(ALICE.uid, "tab-1"), view=view)


@pytest.fixture
def sync(context):
    return SessionSynchronizer(context)


@pytest.fixture
def signed_in(sync):
    sync.restore_or_start_session(ALICE)
    return sync


def text_message(sender, content):
    return Message(sender=sender, type="text", content=content)


def image_message(sender="user", data="aGVsbG8=", mime_type="image/png"):
    return Message(sender=sender, type="image", content=data, mime_type=mime_type)

