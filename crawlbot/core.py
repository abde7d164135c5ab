"""
FILE DESCRIPTION: Foundational module for global configuration and logging.
KEY FUNCTIONS/CLASSES: setup_logger, CompanyFormatter, crawl defaults
"""

import logging
import os
import sys
from datetime import datetime
from pathlib import Path

import psutil
from dotenv import load_dotenv

# === CONFIGURATION SECTION ===

# Load .env from the working directory, then from the project root
load_dotenv()
load_dotenv(Path(__file__).resolve().parents[1] / '.env')


def _default_concurrency():
    cpus = psutil.cpu_count(logical=True) or 2
    return max(1, cpus - 1)


# Navigation timeout per page load (milliseconds)
DEFAULT_TIMEOUT_MS = int(os.getenv("CRAWLBOT_TIMEOUT_MS", 30000))

# Playwright wait condition for navigations
DEFAULT_WAIT_UNTIL = os.getenv("CRAWLBOT_WAIT_UNTIL", "networkidle")

# Worker pool size
DEFAULT_MAX_CONCURRENCY = int(os.getenv("CRAWLBOT_MAX_CONCURRENCY", _default_concurrency()))

# Requests to the same resource allowed within one page load
RETRY_CEILING = int(os.getenv("CRAWLBOT_RETRY_CEILING", 5))

# Upper bound for the scrolling emulation (seconds)
MAX_SCROLL_SECONDS = int(os.getenv("CRAWLBOT_MAX_SCROLL_SECONDS", 60))
SCROLL_DISTANCE = 200
SCROLL_INTERVAL_MS = 400

VIEWPORT = {"width": 1200, "height": 800}
USER_AGENT = os.getenv(
    "CRAWLBOT_USER_AGENT",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36",
)

LAUNCH_ARGS = (
    "--disable-setuid-sandbox",
    "--no-sandbox",
    "--disable-dev-shm-usage",
)

# Diagnostics channel of the crawler itself, never filtered
TELEMETRY_PREFIXES = (
    "https://browser.sentry-cdn.com",
    "https://sentry.io/api/",
)
PROXY_BYPASS = "browser.sentry-cdn.com,sentry.io"

# Resource kinds not needed to discover page structure
BLOCKED_RESOURCE_TYPES = frozenset({
    "image",
    "media",
    "font",
    "texttrack",
    "object",
    "beacon",
    "imageset",
})

# Third-party analytics / ad vendors
SKIPPED_RESOURCES = (
    "quantserve",
    "adzerk",
    "doubleclick",
    "adition",
    "exelator",
    "sharethrough",
    "cdn.api.twitter",
    "google-analytics",
    "facebook",
    "analytics",
    "optimizely",
    "clicktale",
    "mixpanel",
    "zedo",
    "clicksor",
    "favicon.ico",
)


# === LOGGING SECTION ===

class CompanyFormatter(logging.Formatter):
    """
    FLOW: Receives a log record -> Extracts timestamp -> Formats according to company standard
    (e.g., [ Tue Jan 06 05:32:41 AM UTC 2026 ]) -> Prepends level and context -> Returns final string.
    """
    def format(self, record):
        dt = datetime.fromtimestamp(record.created)
        timestamp = dt.strftime("%a %b %d %I:%M:%S %p UTC %Y")
        context = getattr(record, 'context', 'root')
        line = f"[ {timestamp} ] : {record.levelname} : {context} : {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logger(name="crawlbot", log_file=None, level=logging.INFO):
    """
    FLOW: Initializes/Retrieves logger -> Checks for existing handlers to prevent duplicates ->
    Sets propagation for child loggers -> Attaches Console and optional File handlers with CompanyFormatter.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if name != "crawlbot":
        logger.propagate = True
        setup_logger("crawlbot", log_file=log_file, level=level)
        return logger

    formatter = CompanyFormatter()

    if not any(getattr(h, "_crawlbot_console", False) for h in logger.handlers):
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        console_handler._crawlbot_console = True
        logger.addHandler(console_handler)

    # Only the root 'crawlbot' logger gets a FileHandler
    if log_file and not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


# Global logger instance
logger = setup_logger()
