"""
Background event loop shared by the HTTP layer and the retention sweeper.

Flask views are synchronous; they hand coroutines to one long-lived asyncio
loop running on a daemon thread and block on the result. The sweeper task
lives on the same loop, so the dispatcher's semaphore and the transports are
only ever used from a single loop.
"""

import asyncio
import concurrent.futures
import logging
import threading
from typing import Any, Awaitable, Optional

logger = logging.getLogger(__name__)


class BackgroundLoop:
    """An asyncio event loop running on its own thread."""

    def __init__(self, name: str = "crkd-loop"):
        self.name = name
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._started = threading.Event()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            raise RuntimeError("Background loop is not running")
        return self._loop

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._started.clear()
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        self._started.wait()
        logger.info(f"Background loop '{self.name}' started")

    def _run(self) -> None:
        loop = self._loop
        asyncio.set_event_loop(loop)
        loop.call_soon(self._started.set)
        try:
            loop.run_forever()
        finally:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()

    def run(self, coro: Awaitable[Any], timeout: Optional[float] = None) -> Any:
        """
        Run ``coro`` on the loop and wait for its result.

        Raises whatever the coroutine raises, or
        ``concurrent.futures.TimeoutError`` if it does not finish within
        ``timeout`` seconds (the coroutine is then cancelled).
        """
        if not self.running:
            if asyncio.iscoroutine(coro):
                coro.close()
            raise RuntimeError("Background loop is not running")

        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        try:
            return future.result(timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            raise

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the loop, cancelling anything still scheduled on it."""
        if not self.running:
            return
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout)
        self._thread = None
        self._loop = None
        logger.info(f"Background loop '{self.name}' stopped")
