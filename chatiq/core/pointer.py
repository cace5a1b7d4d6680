from typing import Optional

from cachetools import TTLCache

POINTER_KEY = "active_session_id"


class TabPointerStore:
    """
    Tab-scoped key-value slots, keyed by (user id, tab id).

    The browser keeps its tab id in sessionStorage, so a slot lives as long as
    the tab does. Slots expire after `ttl` seconds without a write.
    """

    def __init__(self, maxsize: int = 10000, ttl: int = 86400):
        self._slots = TTLCache(maxsize=maxsize, ttl=ttl)

    def mirror(self, uid: str, tab_id: str) -> "PointerMirror":
        return PointerMirror(self, uid, tab_id)

    def get(self, uid: str, tab_id: str, key: str) -> Optional[str]:
        return self._slots.get((uid, tab_id, key))

    def set(self, uid: str, tab_id: str, key: str, value: str):
        self._slots[(uid, tab_id, key)] = value

    def remove(self, uid: str, tab_id: str, key: str):
        self._slots.pop((uid, tab_id, key), None)

    def remove_user(self, uid: str):
        """Drop every slot of `uid`, including tabs whose runtime is gone."""
        for key in list(self._slots.keys()):
            if key[0] == uid:
                self._slots.pop(key, None)


class PointerMirror:
    """Durable copy of the active-session pointer for one user in one tab."""

    def __init__(self, store: TabPointerStore, uid: str, tab_id: str, key: str = POINTER_KEY):
        self.store = store
        self.uid = uid
        self.tab_id = tab_id
        self.key = key

    def get(self) -> Optional[str]:
        return self.store.get(self.uid, self.tab_id, self.key)

    def set(self, session_id: str):
        self.store.set(self.uid, self.tab_id, self.key, session_id)

    def clear(self):
        self.store.remove(self.uid, self.tab_id, self.key)
