import asyncio
from collections import deque
from typing import AsyncIterator, List, Optional, Protocol, Set

from chatiq.core.formatting import greeting, render_message
from chatiq.models.chat import Message, Session, UserIdentity

NEW_CHAT_NOTICE = "Start a new conversation!"
EMPTY_CHAT_NOTICE = "This chat is empty. Send a message to start!"
NO_HISTORY_NOTICE = "No chat history."


class ChatView(Protocol):
    """Everything the session core is allowed to do to the screen."""

    def set_user(self, identity: Optional[UserIdentity]) -> None: ...

    def render_messages(self, messages: List[Message], placeholder: Optional[str] = None) -> None: ...

    def render_sessions(self, sessions: List[Session], active_session_id: Optional[str]) -> None: ...

    def show_notice(self, message: str, critical: bool = False) -> None: ...

    def set_busy(self, busy: bool) -> None: ...

    def clear_input(self) -> None: ...


class BufferedChatView:
    """
    ChatView that keeps the last rendered screen and fans every change out
    to listening event queues (one per open SSE stream).
    """

    def __init__(self, max_notices: int = 20):
        self.user: Optional[dict] = None
        self.messages: List[dict] = []
        self.placeholder: Optional[str] = None
        self.sessions: List[dict] = []
        self.sessions_placeholder: Optional[str] = None
        self.active_session_id: Optional[str] = None
        self.notices = deque(maxlen=max_notices)
        self.busy = False
        self._queues: Set[asyncio.Queue] = set()

    # --- ChatView ---

    def set_user(self, identity):
        if identity is None:
            self.user = None
        else:
            self.user = {
                "uid": identity.uid,
                "display_name": identity.display_name,
                "greeting": greeting(identity),
                "is_anonymous": identity.is_anonymous,
            }
        self._publish("user", self.user)

    def render_messages(self, messages, placeholder=None):
        self.messages = [render_message(m) for m in messages]
        self.placeholder = placeholder if not messages else None
        self._publish("messages", {"messages": self.messages, "placeholder": self.placeholder})

    def render_sessions(self, sessions, active_session_id):
        self.active_session_id = active_session_id
        self.sessions = [
            {"id": s.id, "title": s.title, "active": s.id == active_session_id}
            for s in sessions
        ]
        self.sessions_placeholder = None if sessions else NO_HISTORY_NOTICE
        self._publish("sessions", {"sessions": self.sessions, "placeholder": self.sessions_placeholder})

    def show_notice(self, message, critical=False):
        notice = {"message": message, "critical": critical}
        self.notices.append(notice)
        self._publish("notice", notice)

    def set_busy(self, busy):
        self.busy = busy
        self._publish("busy", {"busy": busy})

    def clear_input(self):
        self._publish("clear_input", {})

    # --- Snapshot & streaming ---

    @property
    def listening(self) -> bool:
        """True while at least one event stream is attached."""
        return bool(self._queues)

    def snapshot(self) -> dict:
        return {
            "user": self.user,
            "messages": self.messages,
            "placeholder": self.placeholder,
            "sessions": self.sessions,
            "sessions_placeholder": self.sessions_placeholder,
            "active_session_id": self.active_session_id,
            "notices": list(self.notices),
            "busy": self.busy,
        }

    def _publish(self, event: str, data):
        for queue in list(self._queues):
            queue.put_nowait({"event": event, "data": data})

    async def events(self) -> AsyncIterator[dict]:
        """Yield view events until the consumer stops iterating."""
        queue: asyncio.Queue = asyncio.Queue()
        self._queues.add(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._queues.discard(queue)
