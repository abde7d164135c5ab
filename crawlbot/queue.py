"""
FILE DESCRIPTION: Priority work queue with a bounded worker pool.
KEY FUNCTIONS/CLASSES: PriorityWorkQueue

FLOW: push() adds a CrawlTask to a heap -> a free worker pops the most urgent task ->
runs the pull handler end-to-end -> reports completion -> on_idle() waiters re-check quiescence.
"""

import dataclasses
import heapq
import itertools
import threading
from typing import Callable, Optional

from crawlbot.core import logger
from crawlbot.models import CrawlTask


class PriorityWorkQueue:
    """
    Pending tasks ordered by (priority, insertion order), dispatched to at most
    `max_concurrency` worker threads. Deduplication is the caller's job: every
    pushed URL must already be claimed in the VisitedLedger.
    """

    def __init__(self, max_concurrency: int, name: str = "Worker"):
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}")
        self.max_concurrency = max_concurrency
        self.name = name

        self._cond = threading.Condition()
        self._pending = []
        self._seq = itertools.count()
        self._in_flight = 0
        self._ended = False
        self._previous_url = None
        self._handler: Optional[Callable] = None
        self._workers = []

        self._dispatched = 0
        self._completed = 0
        self._peak_in_flight = 0

    def on_pull(self, handler: Callable):
        """Register handler(task, previous_url), invoked once per dispatched task."""
        self._handler = handler

    def init(self):
        """Start the worker pool. Safe to call more than once."""
        with self._cond:
            if self._workers or self._ended:
                return
            for i in range(self.max_concurrency):
                worker = threading.Thread(target=self._run, name=f"{self.name}-{i}", daemon=True)
                self._workers.append(worker)
        for worker in self._workers:
            worker.start()
        logger.info(f"[QUEUE] started {self.max_concurrency} workers")

    def push(self, url: str, options=None, priority: int = 0) -> bool:
        """
        Insert a task. Ties on priority dispatch in FIFO order.
        Ignored once the queue has ended.
        """
        task = CrawlTask(url=url, options=dict(options or {}), priority=priority)
        with self._cond:
            if self._ended:
                logger.debug(f"[QUEUE] push after end ignored: {url}")
                return False
            heapq.heappush(self._pending, (priority, next(self._seq), task))
            self._cond.notify_all()
        return True

    def _next_task(self):
        """Block until a task is available or the queue ends. Returns None on end."""
        with self._cond:
            while not self._ended and (not self._pending or self._in_flight >= self.max_concurrency):
                self._cond.wait()
            if self._ended:
                return None, None
            _, _, task = heapq.heappop(self._pending)
            task = dataclasses.replace(task, attempt=task.attempt + 1)
            previous_url, self._previous_url = self._previous_url, task.url
            self._in_flight += 1
            self._dispatched += 1
            self._peak_in_flight = max(self._peak_in_flight, self._in_flight)
            return task, previous_url

    def _task_done(self):
        with self._cond:
            self._in_flight -= 1
            self._completed += 1
            self._cond.notify_all()

    def _run(self):
        while True:
            task, previous_url = self._next_task()
            if task is None:
                return
            try:
                if self._handler is not None:
                    self._handler(task, previous_url)
            except Exception:
                logger.exception(f"[QUEUE] pull handler failed for {task.url}",
                                 extra={'context': threading.current_thread().name})
            finally:
                self._task_done()

    def _is_idle(self):
        return not self._pending and self._in_flight == 0

    def on_idle(self, timeout: Optional[float] = None) -> bool:
        """
        Block until nothing is pending and nothing is in flight.
        Re-evaluated after every completion, so work discovered while waiting keeps it blocked.
        Returns False only if `timeout` elapsed first.
        """
        with self._cond:
            return self._cond.wait_for(self._is_idle, timeout=timeout)

    def end(self):
        """Stop dispatching, drop pending tasks, let in-flight tasks finish."""
        with self._cond:
            if self._ended:
                return
            self._ended = True
            dropped = len(self._pending)
            self._pending.clear()
            self._cond.notify_all()
        logger.info(f"[QUEUE] ended ({dropped} pending tasks dropped)")

    def join(self, timeout: Optional[float] = None):
        current = threading.current_thread()
        for worker in self._workers:
            if worker is not current:
                worker.join(timeout)

    @property
    def ended(self):
        with self._cond:
            return self._ended

    def stats(self):
        with self._cond:
            return {
                "pending": len(self._pending),
                "in_flight": self._in_flight,
                "dispatched": self._dispatched,
                "completed": self._completed,
                "peak_in_flight": self._peak_in_flight,
            }
