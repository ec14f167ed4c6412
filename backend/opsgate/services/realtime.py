from __future__ import annotations
"""In-process snapshot publisher.

Publishers push the *full* latest value for a key; subscribers hold a single
slot with the newest snapshot only. A slow or reconnecting subscriber therefore
never replays intermediate states, it simply observes the latest one.

Keys are plain strings ("pcs/42", "queue/HeadOfOperations"). A subscription may
target one key or every key under a prefix ("queue/").

The hub lives in one process. With several worker processes a publish only
reaches subscribers of the same worker; evaluators elsewhere observe the
change on their next PCS_REFRESH_SECONDS re-read.
"""
import threading
from typing import Any, Dict, Iterator, List, Optional, Tuple

_NOTHING = object()


class Subscription:
    def __init__(self, hub: 'SnapshotHub', key: str, prefix: bool = False):
        self.hub = hub
        self.key = key
        self.prefix = prefix
        self._cond = threading.Condition()
        self._latest: Any = _NOTHING
        self._latest_key: Optional[str] = None
        self._seq = 0
        self._seen = 0
        self.cancelled = False

    def matches(self, key: str) -> bool:
        return key.startswith(self.key) if self.prefix else key == self.key

    def _offer(self, key: str, snapshot: Any):
        with self._cond:
            if self.cancelled:
                return
            self._latest = snapshot
            self._latest_key = key
            self._seq += 1
            self._cond.notify_all()

    def latest(self) -> Any:
        """Newest snapshot received so far, or None."""
        with self._cond:
            return None if self._latest is _NOTHING else self._latest

    def poll(self) -> Tuple[bool, Any]:
        """(changed, snapshot): whether a snapshot arrived since the last poll/wait."""
        with self._cond:
            changed = self._seq != self._seen
            self._seen = self._seq
            return changed, (None if self._latest is _NOTHING else self._latest)

    def wait(self, timeout: Optional[float] = None) -> Optional[Any]:
        """Block until a snapshot newer than the last consumed one arrives.

        Returns that snapshot, or None on timeout / cancellation.
        """
        with self._cond:
            self._cond.wait_for(lambda: self.cancelled or self._seq != self._seen, timeout=timeout)
            if self.cancelled or self._seq == self._seen:
                return None
            self._seen = self._seq
            return self._latest

    def cancel(self):
        with self._cond:
            self.cancelled = True
            self._cond.notify_all()
        self.hub._remove(self)

    def __iter__(self) -> Iterator[Any]:
        while not self.cancelled:
            snap = self.wait()
            if snap is not None:
                yield snap

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.cancel()


class SnapshotHub:
    def __init__(self):
        self._lock = threading.Lock()
        self._subs: List[Subscription] = []
        self._last: Dict[str, Any] = {}
        self._versions: Dict[str, int] = {}

    def subscribe(self, key: str, prefix: bool = False, replay: bool = True) -> Subscription:
        """Register a subscription. With replay, the current snapshot(s) are delivered at once."""
        sub = Subscription(self, key, prefix=prefix)
        with self._lock:
            self._subs.append(sub)
            if replay:
                for k, v in self._last.items():
                    if sub.matches(k):
                        sub._offer(k, v)
        return sub

    def publish(self, key: str, snapshot: Any, version: Optional[int] = None) -> bool:
        """Store and deliver snapshot. A versioned snapshot older than the last one is dropped.

        Delivery happens under the hub lock so every subscriber sees snapshots
        of one key in version order.
        """
        with self._lock:
            if version is not None:
                last_version = self._versions.get(key)
                if last_version is not None and version < last_version:
                    return False
                self._versions[key] = version
            self._last[key] = snapshot
            for sub in self._subs:
                if sub.matches(key):
                    sub._offer(key, snapshot)
        return True

    def last(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._last.get(key)

    def subscriber_count(self, key: str) -> int:
        with self._lock:
            return sum(1 for s in self._subs if s.matches(key))

    def _remove(self, sub: Subscription):
        with self._lock:
            if sub in self._subs:
                self._subs.remove(sub)

    def reset(self):
        with self._lock:
            subs, self._subs = self._subs, []
            self._last.clear()
            self._versions.clear()
        for sub in subs:
            with sub._cond:
                sub.cancelled = True
                sub._cond.notify_all()


# Process-wide hub shared by the PCS store and the workflow engine
hub = SnapshotHub()

__all__ = ['Subscription', 'SnapshotHub', 'hub']
