from crawlbot.crawler import Crawler
from crawlbot.errors import BrowserUnavailable, CrawlError, NavigationError, NavigationTimeout, PostProcessingError
from crawlbot.models import CrawlTask, ErrorRecord, FormConfig, WaitUntil

__all__ = [
    "Crawler",
    "CrawlTask",
    "ErrorRecord",
    "FormConfig",
    "WaitUntil",
    "CrawlError",
    "NavigationTimeout",
    "NavigationError",
    "PostProcessingError",
    "BrowserUnavailable",
]
