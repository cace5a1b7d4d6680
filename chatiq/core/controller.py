from dataclasses import dataclass
from typing import Optional

from chatiq.core.context_builder import ConversationContextBuilder
from chatiq.core.intents import (
    ChatIntent,
    DeleteSession,
    SelectSession,
    SignOut,
    StartNewChat,
    SubmitMessage,
)
from chatiq.core.session_sync import SessionState, SessionSynchronizer
from chatiq.models.chat import ImageAttachment, Message
from chatiq.utils.errors import ApiFailure, AuthFailure, ChatIQError, StorageFailure
from chatiq.utils.logger import logger

BUSY_NOTICE = "Please wait for the current response."


@dataclass
class SubmitOutcome:
    """
    status is one of:
      replied   - bot turn persisted (error set when it is a failure turn)
      discarded - reply arrived after the user left the session
      failed    - nothing was answered, see error
      ignored   - empty input
      busy      - a request is already in flight
    """
    status: str
    session_id: Optional[str] = None
    reply: Optional[str] = None
    error: Optional[ChatIQError] = None


class ChatViewController:
    """Turns UI intents into session operations and model round-trips."""

    def __init__(self, synchronizer: SessionSynchronizer, context_builder: ConversationContextBuilder, model):
        self.sync = synchronizer
        self.context_builder = context_builder
        self.model = model
        self.busy = False
        # Input kept after a failed save so the user can retry
        self.pending_input: Optional[SubmitMessage] = None

    @property
    def view(self):
        return self.sync.view

    async def dispatch(self, intent: ChatIntent):
        if isinstance(intent, SubmitMessage):
            return await self.on_user_submit(intent.text, intent.image)
        try:
            if isinstance(intent, SelectSession):
                self.sync.select_session(intent.session_id)
            elif isinstance(intent, StartNewChat):
                self.sync.start_draft()
            elif isinstance(intent, DeleteSession):
                return self.sync.delete_session(intent.session_id, intent.confirmed)
            elif isinstance(intent, SignOut):
                self.sync.sign_out()
            else:
                raise TypeError(f"Unknown intent: {intent!r}")
        except ChatIQError as e:
            self.view.show_notice(e.message)
            raise
        return None

    def _set_busy(self, busy: bool):
        self.busy = busy
        self.view.set_busy(busy)

    def _still_active(self, session_id: str, uid: str) -> bool:
        user = self.sync.context.user
        return (
            self.sync.state is SessionState.ACTIVE
            and self.sync.active_session_id == session_id
            and user is not None
            and user.uid == uid
        )

    async def on_user_submit(self, text: str, image: Optional[ImageAttachment] = None) -> SubmitOutcome:
        text = (text or "").strip()
        if not text and image is None:
            return SubmitOutcome("ignored")
        if self.busy:
            self.view.show_notice(BUSY_NOTICE)
            return SubmitOutcome("busy")
        if self.sync.state is SessionState.SIGNED_OUT:
            error = AuthFailure("Please sign in to chat.")
            self.view.show_notice(error.message)
            return SubmitOutcome("failed", error=error)

        uid = self.sync.uid
        self._set_busy(True)
        try:
            # Step 1: persist the user's turn, creating the session on first send
            self.pending_input = SubmitMessage(text=text, image=image)
            try:
                session_id = await self.sync.ensure_persisted(text, has_image=image is not None)
                if image is not None:
                    self.sync.save_message(session_id, Message(
                        sender="user", type="image", content=image.data, mime_type=image.mime_type,
                    ))
                if text:
                    self.sync.save_message(session_id, Message(sender="user", type="text", content=text))
            except StorageFailure as e:
                self.view.show_notice(e.message)
                return SubmitOutcome("failed", session_id=self.sync.active_session_id, error=e)
            self.pending_input = None
            self.view.clear_input()

            # Step 2: history + request, then the model call
            error = None
            try:
                turns = self.context_builder.build(uid, session_id, text, image)
                reply = await self.model.generate(turns)
            except (ApiFailure, StorageFailure) as e:
                logger.error(f"❌ Request for session {session_id} failed: {e.message}")
                self.view.show_notice(e.message)
                error = e
                reply = f"Sorry, an error occurred: {e.message}"

            # Step 3: drop replies for a session the user already left
            if not self._still_active(session_id, uid):
                logger.info(f"Discarding reply for inactive session {session_id}")
                return SubmitOutcome("discarded", session_id=session_id, reply=reply, error=error)

            try:
                self.sync.save_message(session_id, Message(sender="bot", type="text", content=reply))
            except StorageFailure as e:
                self.view.show_notice(e.message)
                return SubmitOutcome("failed", session_id=session_id, reply=reply, error=e)
            return SubmitOutcome("replied", session_id=session_id, reply=reply, error=error)
        finally:
            self._set_busy(False)
