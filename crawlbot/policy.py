"""
Centralized request policy for every network request a page makes.

RequestPolicy holds the immutable rules (domains, blocked kinds, denylists).
RequestFilter applies them to one page load and owns the only mutable state:
the per-load attempt counter and the timed-out flag.
"""

from collections import Counter
from dataclasses import dataclass, field
from threading import Lock
from typing import Dict, FrozenSet, Iterable, NamedTuple, Tuple

from crawlbot.core import (
    BLOCKED_RESOURCE_TYPES,
    RETRY_CEILING,
    SKIPPED_RESOURCES,
    TELEMETRY_PREFIXES,
    logger,
)
from crawlbot.url_utils import is_http, registrable_domain, resource_key


class PageRequest(NamedTuple):
    url: str
    resource_kind: str
    is_document_navigation: bool = False
    is_telemetry_endpoint: bool = False


class Verdict(NamedTuple):
    allowed: bool
    reason: str


ALLOWED = "allowed"
TELEMETRY = "telemetry"
TIMED_OUT = "timed_out"
TOO_MANY_REQUESTS = "too_many_requests"
BLOCKED_RESOURCE_TYPE = "blocked_resource_type"
BLOCKED_SUBSTRING = "blocked_substring"
BLOCKED_DOMAIN = "blocked_domain"


def _frozen(values: Iterable[str]) -> FrozenSet[str]:
    return frozenset(v.lower() for v in values if v)


@dataclass(frozen=True)
class RequestPolicy:
    """
    Immutable rule set shared by all workers.

    - domains: allowed registrable domains (apex + any subdomain)
    - blocked_kinds: resource kinds never loaded
    - skipped_resources: built-in vendor denylist (substring match)
    - block_list: operator supplied denylist (substring match)
    - telemetry_prefixes: the crawler's own diagnostics endpoints, always allowed
    """
    domains: FrozenSet[str] = frozenset()
    blocked_kinds: FrozenSet[str] = BLOCKED_RESOURCE_TYPES
    skipped_resources: Tuple[str, ...] = SKIPPED_RESOURCES
    block_list: Tuple[str, ...] = ()
    telemetry_prefixes: Tuple[str, ...] = TELEMETRY_PREFIXES
    retry_ceiling: int = RETRY_CEILING

    def __post_init__(self):
        object.__setattr__(self, "domains", _frozen(self.domains))
        object.__setattr__(self, "blocked_kinds", _frozen(self.blocked_kinds))
        object.__setattr__(self, "skipped_resources", tuple(self.skipped_resources))
        object.__setattr__(self, "block_list", tuple(b for b in self.block_list if b))
        object.__setattr__(self, "telemetry_prefixes", tuple(self.telemetry_prefixes))

    def is_telemetry(self, url: str) -> bool:
        return any(url.startswith(prefix) for prefix in self.telemetry_prefixes)

    def contains_blocked_substring(self, url: str) -> bool:
        return any(s in url for s in self.skipped_resources) or any(s in url for s in self.block_list)

    def is_domain_allowed(self, url: str) -> bool:
        return registrable_domain(url) in self.domains

    def is_link_allowed(self, url: str) -> bool:
        """Gate for discovered anchors before they are claimed and queued."""
        return is_http(url) and self.is_domain_allowed(url) and not self.contains_blocked_substring(url)

    def new_filter(self) -> "RequestFilter":
        return RequestFilter(self)


@dataclass
class RequestFilter:
    """
    Per page load request filter.
    FLOW: count the attempt -> telemetry -> timed out -> retry ceiling ->
    blocked kind -> denylists -> document domain -> allow. First match wins.
    """
    policy: RequestPolicy
    _attempts: Dict[str, int] = field(default_factory=dict, repr=False)
    _timed_out: bool = False
    _stats: Counter = field(default_factory=Counter, repr=False)
    _lock: Lock = field(default_factory=Lock, repr=False)

    def reset(self):
        """Start of a new page load."""
        with self._lock:
            self._attempts.clear()
            self._timed_out = False

    def mark_timed_out(self):
        with self._lock:
            self._timed_out = True

    @property
    def timed_out(self) -> bool:
        with self._lock:
            return self._timed_out

    def check(self, url: str, resource_kind: str) -> Verdict:
        """Build the PageRequest for a raw browser request and decide it."""
        return self.decide(PageRequest(
            url=url,
            resource_kind=resource_kind,
            is_document_navigation=resource_kind == "document",
            is_telemetry_endpoint=self.policy.is_telemetry(url),
        ))

    def decide(self, request: PageRequest) -> Verdict:
        key = resource_key(request.url)
        with self._lock:
            self._attempts[key] = self._attempts.get(key, 0) + 1
            attempts = self._attempts[key]
            timed_out = self._timed_out

        verdict = self._evaluate(request, key, attempts, timed_out)
        with self._lock:
            self._stats[verdict.reason] += 1
        if not verdict.allowed:
            logger.debug(f"[POLICY] Forbidden ({verdict.reason}, {request.resource_kind}): {key}")
        return verdict

    def _evaluate(self, request, key, attempts, timed_out):
        policy = self.policy
        if request.is_telemetry_endpoint:
            return Verdict(True, TELEMETRY)
        if timed_out:
            return Verdict(False, TIMED_OUT)
        if attempts > policy.retry_ceiling:
            return Verdict(False, TOO_MANY_REQUESTS)
        if (request.resource_kind or "").lower() in policy.blocked_kinds:
            return Verdict(False, BLOCKED_RESOURCE_TYPE)
        if policy.contains_blocked_substring(key):
            return Verdict(False, BLOCKED_SUBSTRING)
        if request.is_document_navigation and not policy.is_domain_allowed(key):
            return Verdict(False, BLOCKED_DOMAIN)
        return Verdict(True, ALLOWED)

    def attempts(self, url: str) -> int:
        with self._lock:
            return self._attempts.get(resource_key(url), 0)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._stats)
