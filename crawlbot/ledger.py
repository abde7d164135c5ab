"""
Visited ledger for a crawl run.
Claims are taken at enqueue time so two workers discovering the same link
cannot both schedule it.
"""

from threading import Lock

from crawlbot.url_utils import canonicalize


class VisitedLedger:
    """
    Thread-safe set of canonical URLs.
    No eviction: the whole visited set is held for the lifetime of the run.
    """

    def __init__(self):
        self._lock = Lock()
        self._claimed = set()

    def try_claim(self, url: str) -> bool:
        """
        Canonicalize and check-and-insert in one step.
        Returns True iff the URL was not claimed before (caller now owns scheduling it).
        """
        key = canonicalize(url)
        with self._lock:
            if key in self._claimed:
                return False
            self._claimed.add(key)
            return True

    def __contains__(self, url):
        key = canonicalize(url)
        with self._lock:
            return key in self._claimed

    def __len__(self):
        with self._lock:
            return len(self._claimed)
