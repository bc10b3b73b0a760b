# changefeed.py
# In-process change notifications. Writers publish the table they touched,
# readers long-poll on a revision number and reload everything on change.

import threading
import time
from typing import List, Tuple


class ChangeFeed:
    def __init__(self):
        self._cond = threading.Condition()
        self._revision = 0
        self._log: List[Tuple[int, str]] = []

    @property
    def revision(self) -> int:
        return self._revision

    def publish(self, table: str) -> int:
        with self._cond:
            self._revision += 1
            self._log.append((self._revision, table))
            del self._log[:-200]
            self._cond.notify_all()
            return self._revision

    def wait(self, since: int, timeout: float = 25.0) -> Tuple[int, List[str]]:
        deadline = time.monotonic() + max(0.0, timeout)
        with self._cond:
            # a client ahead of us (server restarted) gets the current revision at once
            while self._revision == since:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                self._cond.wait(remaining)
            tables = sorted({t for rev, t in self._log if rev > since})
            return self._revision, tables


feed = ChangeFeed()
