"""
Session Synchronizer: which conversation is active, and the one-time
conversion of a draft conversation into a persisted Session.

States:

    SIGNED_OUT --restore_or_start_session--> DRAFT
    DRAFT      --ensure_persisted----------> ACTIVE(id)
    ACTIVE(id) --select_session------------> ACTIVE(id')
    ACTIVE(id) --start_draft / delete------> DRAFT
    any        --sign_out------------------> SIGNED_OUT

A failed store call leaves the state as it was before the call. The only
exception is ensure_persisted: once the Session exists the state stays
ACTIVE even if the first message write fails afterwards.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional

from chatiq.core.pointer import PointerMirror
from chatiq.core.subscriptions import SubscriptionSlot
from chatiq.core.view import ChatView, EMPTY_CHAT_NOTICE, NEW_CHAT_NOTICE
from chatiq.models.chat import Message, Session, UserIdentity, derive_title
from chatiq.utils.errors import AuthFailure, StorageFailure
from chatiq.utils.logger import logger


class SessionState(str, Enum):
    SIGNED_OUT = "signed_out"
    DRAFT = "draft"
    ACTIVE = "active"


@dataclass
class ChatContext:
    """
    Everything one browser tab's chat needs: the signed-in user, the store,
    the pointer mirror, the view and the two listener slots.
    """
    store: Any
    pointer: PointerMirror
    view: ChatView
    user: Optional[UserIdentity] = None
    loop: Optional[asyncio.AbstractEventLoop] = None
    sessions_subscription: SubscriptionSlot = field(default_factory=lambda: SubscriptionSlot("sessions"))
    messages_subscription: SubscriptionSlot = field(default_factory=lambda: SubscriptionSlot("messages"))

    def post(self, callback: Callable, *args):
        """Run `callback` on the owning event loop (store listeners fire on SDK threads)."""
        loop = self.loop
        if loop is None or loop.is_closed():
            callback(*args)
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            callback(*args)
        else:
            loop.call_soon_threadsafe(callback, *args)

    def close(self):
        self.messages_subscription.release()
        self.sessions_subscription.release()


class SessionSynchronizer:
    """Single source of truth for the active conversation of one tab."""

    def __init__(self, context: ChatContext):
        self.context = context
        self.state = SessionState.SIGNED_OUT
        self.active_session_id: Optional[str] = None
        self.sessions: List[Session] = []
        self.messages: List[Message] = []
        self._persist_lock = asyncio.Lock()

    # --- Helpers ---

    @property
    def uid(self) -> str:
        user = self.context.user
        if user is None or self.state is SessionState.SIGNED_OUT:
            raise AuthFailure("Please sign in to chat.")
        return user.uid

    @property
    def store(self):
        return self.context.store

    @property
    def view(self) -> ChatView:
        return self.context.view

    def _watch_sessions(self):
        uid = self.uid

        def attach(token):
            return self.store.subscribe_sessions(
                uid,
                lambda sessions: self.context.post(self._on_sessions, token, sessions),
                lambda error: self.context.post(self._on_error, token, self.context.sessions_subscription, error),
            )

        self.context.sessions_subscription.replace(attach)

    def _watch_messages(self, session_id: str):
        uid = self.uid

        def attach(token):
            return self.store.subscribe_messages(
                uid,
                session_id,
                lambda messages: self.context.post(self._on_messages, token, messages),
                lambda error: self.context.post(self._on_error, token, self.context.messages_subscription, error),
            )

        self.context.messages_subscription.replace(attach)

    def _on_sessions(self, token: int, sessions: List[Session]):
        if not self.context.sessions_subscription.is_current(token):
            return
        self.sessions = sessions
        self.view.render_sessions(sessions, self.active_session_id)

    def _on_messages(self, token: int, messages: List[Message]):
        if not self.context.messages_subscription.is_current(token):
            return
        self.messages = messages
        self.view.render_messages(messages, placeholder=EMPTY_CHAT_NOTICE)

    def _on_error(self, token: int, slot: SubscriptionSlot, error: Exception):
        if not slot.is_current(token):
            return
        message = getattr(error, "message", None) or str(error)
        logger.error(f"❌ Listener error on {slot.name}: {message}")
        self.view.show_notice(message)

    # --- Operations ---

    def restore_or_start_session(self, identity: UserIdentity):
        """
        Bring a freshly signed-in (or resumed) user to DRAFT or ACTIVE.

        Loads the session list, then resumes the session stored in the
        pointer mirror if it still exists. Any failure here degrades to a
        draft without surfacing an error.
        """
        self.context.close()
        self.context.user = identity
        self.state = SessionState.DRAFT
        self.active_session_id = None
        self.messages = []
        self.view.set_user(identity)

        try:
            self._watch_sessions()
        except StorageFailure as e:
            self.view.show_notice("Could not load chat history.")
            logger.warning(f"⚠️ Session list unavailable for {identity.uid}: {e}")

        stored_id = self.context.pointer.get()
        if stored_id:
            try:
                session = self.store.get_session(identity.uid, stored_id)
            except StorageFailure as e:
                logger.warning(f"⚠️ Could not verify stored session {stored_id}: {e}")
                session = None
            if session is not None:
                try:
                    self.select_session(stored_id)
                    logger.info(f"🔄 Resumed session {stored_id} for {identity.uid}")
                    return
                except StorageFailure as e:
                    logger.warning(f"⚠️ Could not resume session {stored_id}: {e}")
            else:
                logger.info(f"Stored session {stored_id} no longer exists, starting a new chat")
        self.start_draft()

    def select_session(self, session_id: str):
        """Make `session_id` the active session and follow its messages."""
        uid = self.uid
        if not session_id or session_id == self.active_session_id:
            return
        previous_id = self.active_session_id
        try:
            self._watch_messages(session_id)
        except StorageFailure:
            self._rewatch(previous_id)
            raise
        self.state = SessionState.ACTIVE
        self.active_session_id = session_id
        self.context.pointer.set(session_id)
        self.view.render_sessions(self.sessions, session_id)
        logger.info(f"📂 {uid} switched to session {session_id}")

    def _rewatch(self, session_id: Optional[str]):
        if not session_id:
            return
        try:
            self._watch_messages(session_id)
        except StorageFailure as e:
            logger.error(f"❌ Could not reattach to session {session_id}: {e}")

    def start_draft(self):
        """Leave any session and show an empty, unsaved conversation."""
        uid = self.uid
        self.context.messages_subscription.release()
        self.state = SessionState.DRAFT
        self.active_session_id = None
        self.messages = []
        self.context.pointer.clear()
        self.view.render_messages([], placeholder=NEW_CHAT_NOTICE)
        self.view.render_sessions(self.sessions, None)
        logger.debug(f"{uid} started a new chat")

    async def ensure_persisted(self, preview_text: Optional[str], has_image: bool = False) -> str:
        """
        Return the active session id, creating the Session first when in DRAFT.

        This is the only path from DRAFT to ACTIVE. Calls are serialized, so a
        second submission queued behind the first sees ACTIVE and reuses its id.
        """
        async with self._persist_lock:
            uid = self.uid
            if self.state is SessionState.ACTIVE:
                return self.active_session_id

            title = derive_title(preview_text, has_image)
            session_id = self.store.create_session(uid, title)

            self.state = SessionState.ACTIVE
            self.active_session_id = session_id
            self.context.pointer.set(session_id)
            try:
                self._watch_messages(session_id)
            except StorageFailure as e:
                self.view.show_notice(e.message)
            self.view.render_sessions(self.sessions, session_id)
            logger.info(f"🆕 Created session {session_id} ('{title}') for {uid}")
            return session_id

    def save_message(self, session_id: str, message: Message) -> str:
        """Append a message to `session_id` and bump its last activity."""
        uid = self.uid
        message_id = self.store.add_message(uid, session_id, message)
        self.store.touch_session(uid, session_id)
        logger.debug(f"Saved {message.sender}/{message.type} message {message_id} to {session_id}")
        return message_id

    def delete_session(self, session_id: str, confirmed: bool = False) -> bool:
        """
        Delete a session and all of its messages. Requires confirmation.

        Returns False when the user did not confirm.
        """
        uid = self.uid
        if not confirmed:
            return False
        message_ids = self.store.list_message_ids(uid, session_id)
        self.store.batch_delete_messages(uid, session_id, message_ids)
        self.store.delete_session(uid, session_id)
        logger.info(f"🗑️ {uid} deleted session {session_id} ({len(message_ids)} messages)")
        if session_id == self.active_session_id:
            self.start_draft()
        return True

    def sign_out(self):
        """Detach every listener, clear the pointer mirror and forget the user."""
        if self.context.user is not None:
            self.context.pointer.clear()
        self.context.close()
        self.state = SessionState.SIGNED_OUT
        self.active_session_id = None
        self.sessions = []
        self.messages = []
        self.context.user = None
        self.view.set_user(None)
        self.view.render_messages([])
        self.view.render_sessions([], None)
