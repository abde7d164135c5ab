"""
FILE DESCRIPTION: Crawl orchestrator driving the work queue, ledger, policy and browser.
KEY FUNCTIONS/CLASSES: Crawler

FLOW: queue(seed) claims the URL and pushes a task -> a worker opens a session, installs
the request filter and navigates -> post-load behaviors discover links, which are claimed
and pushed -> on_idle() returns at quiescence -> close() tears everything down.
"""

import itertools
import os
import threading
from collections import Counter

import psutil

from crawlbot import actions
from crawlbot.browser import BrowserManager
from crawlbot.core import (
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_TIMEOUT_MS,
    DEFAULT_WAIT_UNTIL,
    MAX_SCROLL_SECONDS,
    VIEWPORT,
    logger,
)
from crawlbot.errors import BrowserUnavailable, NavigationError, NavigationTimeout, PostProcessingError
from crawlbot.ledger import VisitedLedger
from crawlbot.models import ErrorRecord, TaskState, WaitUntil
from crawlbot.policy import RequestPolicy
from crawlbot.queue import PriorityWorkQueue
from crawlbot.url_utils import canonicalize


class Crawler:
    """
    Owns the VisitedLedger and PriorityWorkQueue, binds a RequestFilter to every
    session, and aggregates per-task errors. A crawl with errors still completes;
    callers inspect errors() after on_idle().
    """

    def __init__(self, domains=(), max_concurrency=None, screenshots=None, timeout=DEFAULT_TIMEOUT_MS,
                 wait_until=DEFAULT_WAIT_UNTIL, block_list=(), form_configs=(), proxy=None,
                 headless=True, max_scroll_seconds=MAX_SCROLL_SECONDS, engine=None):
        self.screenshots = screenshots
        self.timeout = timeout
        self.wait_until = WaitUntil.parse(wait_until)
        self.max_scroll_seconds = max_scroll_seconds
        self.form_configs = list(form_configs)

        self.policy = RequestPolicy(domains=frozenset(domains), block_list=tuple(block_list))
        self.engine = engine if engine is not None else BrowserManager(proxy=proxy, headless=headless)

        self._ledger = VisitedLedger()
        self._queue = PriorityWorkQueue(DEFAULT_MAX_CONCURRENCY if max_concurrency is None else max_concurrency)
        self._queue.on_pull(self._request)

        self._errors = []
        self._errors_lock = threading.Lock()
        self._fatal = None
        self._counter = itertools.count(1)
        self._request_decisions = Counter()
        self._stats_lock = threading.Lock()
        self._closed = False

    def log(self, level, msg):
        getattr(logger, level)(msg, extra={'context': threading.current_thread().name})

    # --- lifecycle ---

    def init(self):
        self._queue.init()

    def queue(self, url, options=None, priority=0) -> bool:
        """Claim `url` in the ledger and schedule it. Returns False if already claimed."""
        url = canonicalize(url)
        if not self._ledger.try_claim(url):
            return False
        return self._queue.push(url, options, priority)

    def on_idle(self, timeout=None) -> bool:
        """
        Block until the queue is quiescent.
        Raises BrowserUnavailable if the crawl was aborted because no browser could be started.
        """
        idle = self._queue.on_idle(timeout)
        with self._errors_lock:
            fatal = self._fatal
        if fatal is not None:
            raise fatal
        return idle

    def close(self):
        """Stop dispatching, wait for in-flight tasks, then release the browser. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._queue.end()
        self._queue.join()
        self.engine.close()

    def errors(self):
        with self._errors_lock:
            return list(self._errors)

    def has_errors(self) -> bool:
        with self._errors_lock:
            return bool(self._errors)

    @property
    def max_concurrency(self):
        return self._queue.max_concurrency

    def visited_count(self) -> int:
        return len(self._ledger)

    def is_visited(self, url) -> bool:
        return url in self._ledger

    def stats(self):
        queue_stats = self._queue.stats()
        with self._errors_lock:
            error_count = len(self._errors)
        with self._stats_lock:
            decisions = dict(self._request_decisions)
        return {
            "visited_count": len(self._ledger),
            "pending": queue_stats["pending"],
            "in_flight": queue_stats["in_flight"],
            "completed": queue_stats["completed"],
            "peak_in_flight": queue_stats["peak_in_flight"],
            "errors": error_count,
            "requests": decisions,
            "memory_mb": psutil.Process(os.getpid()).memory_info().rss / 1024 / 1024,
        }

    # --- per-task protocol ---

    def _record(self, url, error):
        with self._errors_lock:
            self._errors.append(ErrorRecord(url, error))

    def _transition(self, url, state):
        self.log("debug", f"[TASK] {state.value}: {url}")

    def _abort(self, error):
        with self._errors_lock:
            if self._fatal is None:
                self._fatal = error
        self._queue.end()

    def _request(self, task, previous_url=None):
        """Run one task end-to-end. Never raises: failures land in errors()."""
        url = task.url
        try:
            timeout_ms = int(task.options.get("timeout", self.timeout))
            wait_until = WaitUntil.parse(task.options.get("wait_until", self.wait_until))
        except (TypeError, ValueError) as e:
            self._record(url, e)
            self.log("error", f"Invalid task options for {url}: {e}")
            return

        try:
            session = self.engine.open_session()
        except BrowserUnavailable as e:
            self._record(url, e)
            self.log("critical", f"Browser unavailable, aborting crawl: {e}")
            self._abort(e)
            return
        except Exception as e:
            self._record(url, e)
            self.log("error", f"Could not open a session for {url}: {e}")
            return

        # DOM calls after navigation are bounded by the same per-task timeout
        session.call_timeout = timeout_ms / 1000
        request_filter = self.policy.new_filter()
        try:
            request_filter.reset()
            session.set_request_filter(request_filter)

            self._transition(url, TaskState.LOADING)
            self.log("info", f"{next(self._counter)}. {url}")
            if previous_url:
                self.log("debug", f"  previous: {previous_url}")

            try:
                session.navigate(url, wait_until=wait_until, timeout_ms=timeout_ms)
                self._transition(url, TaskState.LOADED)
            except NavigationTimeout as e:
                # Timeouts don't mean the page failed to render; keep going with what's there
                request_filter.mark_timed_out()
                self._record(url, e)
                self._transition(url, TaskState.TIMED_OUT)
                self.log("warning", f"Timed out loading url: {url}")
            except NavigationError as e:
                self._record(url, e)
                self._transition(url, TaskState.FAILED)
                self.log("error", f"An error occurred on url: {url}: {e}")
                return

            self._transition(url, TaskState.POST_PROCESSING)
            try:
                session.set_viewport(VIEWPORT["width"], VIEWPORT["height"])
                self._process_page(session, url, wait_until, timeout_ms)
            except Exception as e:
                error = PostProcessingError(f"post-load processing failed: {e}", url=url)
                error.__cause__ = e
                self._record(url, error)
                self._transition(url, TaskState.FAILED)
                self.log("error", f"An error occurred on url: {url}: {e}")
                return
            self._transition(url, TaskState.DONE)
        except Exception as e:
            self._record(url, e)
            self.log("error", f"Unexpected failure on url: {url}: {e}")
        finally:
            with self._stats_lock:
                self._request_decisions.update(request_filter.stats())
            session.close()

    def _process_page(self, session, url, wait_until, timeout_ms):
        if self.screenshots:
            actions.take_screenshot(session, self.screenshots, url)

        self._discover_links(session)
        actions.emulate_scrolling(session, self.max_scroll_seconds)
        actions.check_all_checkboxes(session)

        if session.form_submitted:
            return
        form_config = actions.find_form_config(self.form_configs, url)
        if form_config is None:
            return

        self.log("info", "  -> Doing the human thing with form data")
        actions.submit_form(session, form_config, wait_until, timeout_ms)
        landed = canonicalize(session.url)
        self._ledger.try_claim(landed)
        self.log("info", f"{next(self._counter)}. {landed}")
        self._process_page(session, landed, wait_until, timeout_ms)

    def _discover_links(self, session):
        queued = 0
        for link in session.query_all("a", "href"):
            if not link:
                continue
            link = canonicalize(link)
            if not self.policy.is_link_allowed(link):
                continue
            if self.queue(link):
                queued += 1
        if queued:
            self.log("debug", f"  discovered {queued} new link(s)")
        return queued
