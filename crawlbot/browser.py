"""
FILE DESCRIPTION: Rendering engine backed by Playwright.
KEY FUNCTIONS/CLASSES: BrowserManager, BrowserSession

Playwright objects are bound to the event loop that created them. The manager
owns ONE dedicated loop thread and ONE browser; worker threads hand coroutines
to that loop and block on the result. Each task gets its own context + page.
"""

import asyncio
import concurrent.futures
import threading

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from crawlbot.core import (
    DEFAULT_TIMEOUT_MS,
    DEFAULT_WAIT_UNTIL,
    LAUNCH_ARGS,
    PROXY_BYPASS,
    USER_AGENT,
    VIEWPORT,
    logger,
)
from crawlbot.errors import BrowserUnavailable, NavigationError, NavigationTimeout
from crawlbot.models import WaitUntil

_CLOSE_TIMEOUT = 10


class BrowserSession:
    """
    One isolated page. Every method is synchronous and safe to call from a
    worker thread; the actual Playwright call runs on the manager's loop.
    """

    def __init__(self, manager, context, page):
        self._manager = manager
        self._context = context
        self._page = page
        self._request_filter = None
        self._closed = False
        self._close_lock = threading.Lock()
        # Login forms are submitted at most once per session
        self.form_submitted = False
        # Upper bound (seconds) for any single browser call made through this session
        self.call_timeout = DEFAULT_TIMEOUT_MS / 1000

    @property
    def url(self) -> str:
        return self._page.url

    def _call(self, coro, timeout=None):
        return self._manager.run(coro, self.call_timeout if timeout is None else timeout)

    # --- request interception ---

    def set_request_filter(self, request_filter):
        """Route every request of this page through request_filter.check(url, kind)."""
        self._request_filter = request_filter
        self._call(self._page.route("**/*", self._route))

    async def _route(self, route):
        request = route.request
        verdict = self._request_filter.check(request.url, request.resource_type)
        try:
            if verdict.allowed:
                await route.continue_()
            else:
                await route.abort()
        except PlaywrightError as e:
            # Page or context closed while the request was in flight
            logger.debug(f"[BROWSER] route for {request.url} not completed: {e}")

    # --- navigation ---

    def navigate(self, url, wait_until=DEFAULT_WAIT_UNTIL, timeout_ms=DEFAULT_TIMEOUT_MS):
        wait = WaitUntil.parse(wait_until).value
        try:
            self._call(self._page.goto(url, wait_until=wait, timeout=timeout_ms),
                       timeout=timeout_ms / 1000 + self.call_timeout)
        except (PlaywrightTimeoutError, TimeoutError) as e:
            raise NavigationTimeout(f"Navigation timeout of {timeout_ms} ms exceeded", url=url) from e
        except PlaywrightError as e:
            raise NavigationError(str(e), url=url) from e

    def click_and_wait(self, selector, wait_until=DEFAULT_WAIT_UNTIL, timeout_ms=DEFAULT_TIMEOUT_MS):
        """Click `selector` and wait for the navigation it triggers."""
        wait = WaitUntil.parse(wait_until).value
        try:
            self._call(self._click_and_wait(selector, wait, timeout_ms),
                       timeout=timeout_ms / 1000 + self.call_timeout)
        except (PlaywrightTimeoutError, TimeoutError) as e:
            raise NavigationTimeout(f"Navigation timeout of {timeout_ms} ms exceeded", url=self.url) from e
        except PlaywrightError as e:
            raise NavigationError(str(e), url=self.url) from e

    async def _click_and_wait(self, selector, wait_until, timeout_ms):
        async with self._page.expect_navigation(wait_until=wait_until, timeout=timeout_ms):
            await self._page.click(selector)

    # --- DOM access ---

    def query_all(self, selector, prop="href"):
        return self._call(self._page.eval_on_selector_all(
            selector, "(nodes, prop) => nodes.map(n => n[prop])", prop
        ))

    def eval_all(self, selector, script, arg=None):
        return self._call(self._page.eval_on_selector_all(selector, script, arg))

    def evaluate(self, script, arg=None, timeout=None):
        return self._call(self._page.evaluate(script, arg), timeout)

    def set_value(self, selector, value):
        return self._call(self._page.eval_on_selector(
            selector, "(el, value) => { el.value = value; }", value
        ))

    def set_viewport(self, width, height):
        self._call(self._page.set_viewport_size({"width": width, "height": height}))

    def screenshot(self, path):
        self._call(self._page.screenshot(path=str(path), full_page=True, type="jpeg"))

    def close(self):
        """Idempotent. Closes the page's context and unregisters the session."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        try:
            self._call(self._context.close())
        except (PlaywrightError, TimeoutError) as e:
            logger.debug(f"[BROWSER] context close failed: {e}")
        finally:
            self._manager._forget(self)

    @property
    def closed(self):
        return self._closed


class BrowserManager:
    """
    FLOW: first open_session() starts the loop thread and launches Chromium (exactly once) ->
    later calls reuse the same browser -> close() closes open sessions, then the browser,
    then Playwright, then stops the loop thread.
    """

    def __init__(self, proxy=None, headless=True, user_agent=USER_AGENT, launch_args=LAUNCH_ARGS):
        self.proxy = proxy
        self.headless = headless
        self.user_agent = user_agent
        self.launch_args = list(launch_args)

        self._init_lock = threading.Lock()
        self._sessions_lock = threading.Lock()
        self._sessions = set()
        self._loop = None
        self._thread = None
        self._playwright = None
        self._browser = None
        self._failure = None

    # --- loop plumbing ---

    def run(self, coro, timeout=None):
        """
        Run a coroutine on the browser loop and block for its result.
        Raises TimeoutError (after cancelling the coroutine) once `timeout` seconds pass.
        """
        loop = self._loop
        if loop is None:
            coro.close()
            raise BrowserUnavailable("browser loop is not running")
        future = asyncio.run_coroutine_threadsafe(coro, loop)
        try:
            return future.result(timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            raise TimeoutError(f"browser call exceeded {timeout}s") from None

    def _ensure_started(self):
        if self._browser is not None:
            return
        with self._init_lock:
            if self._browser is not None:
                return
            if self._failure is not None:
                raise BrowserUnavailable(f"browser failed to start: {self._failure}") from self._failure

            if self._loop is None:
                self._loop = asyncio.new_event_loop()
                self._thread = threading.Thread(target=self._loop.run_forever, daemon=True, name="BrowserLoop")
                self._thread.start()

            try:
                self.run(self._launch())
            except Exception as e:
                self._failure = e
                logger.critical(f"[BROWSER] Fatal: could not launch browser: {e}")
                raise BrowserUnavailable(f"browser failed to start: {e}") from e
            logger.info(f"[BROWSER] Chromium launched (headless={self.headless}, proxy={self.proxy})")

    async def _launch(self):
        self._playwright = await async_playwright().start()
        options = {"headless": self.headless, "args": self.launch_args}
        if self.proxy:
            options["proxy"] = {"server": self.proxy, "bypass": PROXY_BYPASS}
        self._browser = await self._playwright.chromium.launch(**options)

    async def _new_page(self):
        context = await self._browser.new_context(
            ignore_https_errors=True,
            user_agent=self.user_agent,
            viewport=VIEWPORT,
        )
        page = await context.new_page()
        return context, page

    # --- public API ---

    def open_session(self) -> BrowserSession:
        self._ensure_started()
        context, page = self.run(self._new_page())
        session = BrowserSession(self, context, page)
        with self._sessions_lock:
            self._sessions.add(session)
        return session

    def _forget(self, session):
        with self._sessions_lock:
            self._sessions.discard(session)

    def open_sessions(self):
        with self._sessions_lock:
            return len(self._sessions)

    async def _shutdown(self):
        if self._browser is not None:
            await self._browser.close()
        if self._playwright is not None:
            await self._playwright.stop()

    def close(self):
        with self._init_lock:
            loop, thread = self._loop, self._thread
            if loop is None:
                return

            with self._sessions_lock:
                sessions = list(self._sessions)
            for session in sessions:
                session.close()

            try:
                self.run(self._shutdown(), timeout=_CLOSE_TIMEOUT)
            except Exception as e:
                logger.warning(f"[BROWSER] shutdown error: {e}")
            finally:
                loop.call_soon_threadsafe(loop.stop)
                thread.join(_CLOSE_TIMEOUT)
                if not thread.is_alive():
                    loop.close()
                self._loop = None
                self._thread = None
                self._browser = None
                self._playwright = None
            logger.info("[BROWSER] closed")
