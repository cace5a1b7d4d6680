from typing import Callable, Optional

from chatiq.utils.logger import logger

Unsubscribe = Callable[[], None]


class SubscriptionSlot:
    """
    Owns at most one live store listener.

    Every release bumps a token; listeners are attached with the token current
    at attach time and their callbacks must check `is_current(token)`, so a
    snapshot delivered late by a released listener is dropped instead of
    rendered twice.
    """

    def __init__(self, name: str):
        self.name = name
        self._unsubscribe: Optional[Unsubscribe] = None
        self._token = 0

    @property
    def active(self) -> bool:
        return self._unsubscribe is not None

    def is_current(self, token: int) -> bool:
        return token == self._token

    def release(self):
        self._token += 1
        handle, self._unsubscribe = self._unsubscribe, None
        if handle is None:
            return
        try:
            handle()
        except Exception as e:
            # The token bump above already silences the listener
            logger.warning(f"⚠️ Failed to detach {self.name} listener: {e}")
        else:
            logger.debug(f"Detached {self.name} listener")

    def replace(self, attach: Callable[[int], Unsubscribe]) -> int:
        """Release the current listener, then attach a new one via `attach(token)`."""
        self.release()
        token = self._token
        self._unsubscribe = attach(token)
        logger.debug(f"Attached {self.name} listener (token {token})")
        return token

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False
