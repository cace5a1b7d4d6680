# runtime.py
#
# One ChatRuntime per (user, browser tab): the explicit context object that
# replaces the browser client's global state record. Idle runtimes are swept
# and their store listeners released.

import asyncio
import time
from typing import Dict, Optional, Tuple

from chatiq.core.context_builder import ConversationContextBuilder
from chatiq.core.controller import ChatViewController
from chatiq.core.pointer import TabPointerStore
from chatiq.core.session_sync import ChatContext, SessionState, SessionSynchronizer
from chatiq.core.view import BufferedChatView
from chatiq.models.chat import UserIdentity
from chatiq.services.firebase_auth import IdentityProvider
from chatiq.utils.logger import logger

DEFAULT_TAB = "default"


class ChatRuntime:
    def __init__(self, identity: UserIdentity, tab_id: str, store, model, pointers: TabPointerStore,
                 history_limit: int = 10, loop: asyncio.AbstractEventLoop = None):
        self.tab_id = tab_id
        self.view = BufferedChatView()
        self.context = ChatContext(
            store=store,
            pointer=pointers.mirror(identity.uid, tab_id),
            view=self.view,
            loop=loop,
        )
        self.synchronizer = SessionSynchronizer(self.context)
        self.controller = ChatViewController(
            self.synchronizer, ConversationContextBuilder(store, limit=history_limit), model
        )
        self.uid = identity.uid
        self.last_seen = time.monotonic()

    def touch(self):
        self.last_seen = time.monotonic()

    def state(self) -> dict:
        return {
            "state": self.synchronizer.state.value,
            "active_session_id": self.synchronizer.active_session_id,
            "busy": self.controller.busy,
            "pending_input": self._pending_input(),
            **self.view.snapshot(),
        }

    def _pending_input(self) -> Optional[dict]:
        """Input from a send whose save failed, so a reloaded page can refill the box."""
        pending = self.controller.pending_input
        if pending is None:
            return None
        return {
            "message": pending.text,
            "image": pending.image.model_dump() if pending.image is not None else None,
        }

    def close(self):
        self.context.close()


class RuntimeRegistry:
    """Creates, restores and retires per-tab runtimes."""

    def __init__(self, identity: IdentityProvider, store, model, pointers: TabPointerStore = None,
                 idle_ttl: float = 3600, history_limit: int = 10):
        self.identity = identity
        self.store = store
        self.model = model
        self.pointers = pointers or TabPointerStore()
        self.idle_ttl = idle_ttl
        self.history_limit = history_limit
        self._runtimes: Dict[Tuple[str, str], ChatRuntime] = {}
        self._unsubscribe_identity = identity.on_identity_change(self._on_identity_change)

    def _on_identity_change(self, uid: str, identity: Optional[UserIdentity]):
        for key, runtime in list(self._runtimes.items()):
            if key[0] != uid:
                continue
            if identity is None:
                runtime.synchronizer.sign_out()
                runtime.close()
                self._runtimes.pop(key, None)
            elif runtime.synchronizer.state is not SessionState.SIGNED_OUT:
                runtime.view.set_user(identity)
        if identity is None:
            self.pointers.remove_user(uid)
            logger.info(f"Closed all chat runtimes for {uid}")

    def _sweep(self):
        now = time.monotonic()
        for key, runtime in list(self._runtimes.items()):
            if runtime.controller.busy or runtime.view.listening:
                continue
            if now - runtime.last_seen > self.idle_ttl:
                runtime.close()
                self._runtimes.pop(key, None)
                logger.debug(f"Retired idle runtime {key}")

    def runtime(self, identity: UserIdentity, tab_id: str = DEFAULT_TAB) -> ChatRuntime:
        """
        Runtime for this user and tab. A new or signed-out runtime is restored
        first, which resumes the tab's previous session when it still exists.
        """
        self._sweep()
        key = (identity.uid, tab_id or DEFAULT_TAB)
        runtime = self._runtimes.get(key)
        if runtime is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None
            runtime = ChatRuntime(
                identity, key[1], self.store, self.model, self.pointers,
                history_limit=self.history_limit, loop=loop,
            )
            self._runtimes[key] = runtime
            logger.info(f"✅ Opened chat runtime for {identity.uid} (tab {key[1]})")
        if runtime.synchronizer.state is SessionState.SIGNED_OUT:
            runtime.synchronizer.restore_or_start_session(identity)
        runtime.touch()
        return runtime

    def sign_in(self, id_token: str, tab_id: str = DEFAULT_TAB) -> ChatRuntime:
        """Explicit sign-in (page load or reload): always re-runs restoration."""
        identity = self.identity.sign_in(id_token)
        key = (identity.uid, tab_id or DEFAULT_TAB)
        existing = self._runtimes.get(key)
        already_restored = existing is not None and existing.synchronizer.state is not SessionState.SIGNED_OUT
        runtime = self.runtime(identity, tab_id)
        if already_restored:
            runtime.synchronizer.restore_or_start_session(identity)
        return runtime

    def close(self):
        for runtime in self._runtimes.values():
            runtime.close()
        self._runtimes.clear()
        self._unsubscribe_identity()
