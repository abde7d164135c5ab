import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, NamedTuple, Pattern, Union


class TaskState(Enum):
    QUEUED = "QUEUED"
    LOADING = "LOADING"
    TIMED_OUT = "TIMED_OUT"
    LOADED = "LOADED"
    POST_PROCESSING = "POST_PROCESSING"
    FAILED = "FAILED"
    DONE = "DONE"


class WaitUntil(Enum):
    LOAD = "load"
    DOMCONTENTLOADED = "domcontentloaded"
    NETWORKIDLE = "networkidle"
    COMMIT = "commit"

    @classmethod
    def parse(cls, value):
        """Accepts enum members, Playwright names and the networkidle0/2 aliases."""
        if isinstance(value, cls):
            return value
        name = str(value).strip().lower()
        if name in ("networkidle0", "networkidle2"):
            return cls.NETWORKIDLE
        return cls(name)


@dataclass(frozen=True)
class CrawlTask:
    """
    Unit of scheduled work.
    Created on discovery or seeding, consumed exactly once by a worker.
    Lower priority value = dispatched earlier.
    """
    url: str
    options: Dict[str, Any] = field(default_factory=dict)
    priority: int = 0
    attempt: int = 0


class ErrorRecord(NamedTuple):
    url: str
    error: BaseException


@dataclass(frozen=True)
class FormConfig:
    """
    Login form automation for pages whose URL matches `url_pattern`.
    `fields` maps CSS selectors to the values written into them.
    """
    url_pattern: Union[str, Pattern]
    fields: Dict[str, str]
    submit_selector: str = "button[type=submit]"

    def __post_init__(self):
        if isinstance(self.url_pattern, str):
            object.__setattr__(self, "url_pattern", re.compile(self.url_pattern, re.IGNORECASE))

    def matches(self, url: str) -> bool:
        return bool(self.url_pattern.search(url))
