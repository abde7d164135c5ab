"""
Error taxonomy for a crawl run.

Per-task failures are recorded by the Crawler and never propagate to the
work queue. BrowserUnavailable is the only condition that aborts a crawl.
Blocked requests are policy decisions, not errors.
"""


class CrawlError(Exception):
    """Base class for crawl failures tied to a URL."""

    def __init__(self, message, url=None):
        super().__init__(message)
        self.url = url


class NavigationTimeout(CrawlError):
    """The page did not reach its wait condition in time. Recoverable."""


class NavigationError(CrawlError):
    """The page could not be loaded at all. Terminal for the task."""


class PostProcessingError(CrawlError):
    """A post-load behavior failed. Terminal for the task."""


class BrowserUnavailable(CrawlError):
    """The shared browser connection could not be established."""
