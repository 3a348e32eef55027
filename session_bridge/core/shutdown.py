"""
Shutdown Coordinator
====================
Orderly shutdown on termination signals and fatal faults.

Fixed order, each step caught on its own:
1. stop the health monitor
2. final session flush (bounded wait, never cancelled)
3. destroy the client handle
4. close the store connection
5. exit with the supplied code (0 for signals, 1 for fatal faults)

A missing temporary session archive (first-time setup) and unhandled
asynchronous errors are logged only and never trigger shutdown.
"""

import asyncio
import signal
import sys
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from session_bridge.core.logger import get_logger
from session_bridge.core.utils import describe_error

logger = get_logger("shutdown")


def is_recoverable_fault(error: BaseException, archive_marker: str = "RemoteAuth") -> bool:
    """Missing session-archive zip, normal on a fresh install."""
    if not isinstance(error, FileNotFoundError):
        return False
    path = str(error.filename or "")
    return archive_marker in path and path.endswith(".zip")


class ShutdownCoordinator:
    """Runs the shutdown sequence once; later requests wait for the first one."""

    def __init__(
        self,
        monitor: Any,
        controller: Any,
        connection: Any,
        tracker: Any,
        final_flush_wait_seconds: float = 2.0,
        archive_marker: str = "RemoteAuth",
        exit_func: Callable[[int], None] = sys.exit,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.monitor = monitor
        self.controller = controller
        self.connection = connection
        self.tracker = tracker
        self.final_flush_wait_seconds = final_flush_wait_seconds
        self.archive_marker = archive_marker
        self._exit_func = exit_func
        self._sleep = sleep

        self._task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self.exit_code: Optional[int] = None
        self.completed_steps: List[str] = []
        self.step_errors: Dict[str, str] = {}

    @property
    def in_progress(self) -> bool:
        return self._task is not None

    # === Shutdown sequence ===

    async def shutdown(self, exit_code: int = 0, reason: str = "signal") -> int:
        """Run (or join) the shutdown sequence. Returns the exit code used."""
        if self._task is None:
            self._task = asyncio.ensure_future(self._run(exit_code, reason))
        else:
            logger.info("shutdown.already_in_progress", {"reason": reason})
        return await asyncio.shield(self._task)

    def request_shutdown(self, exit_code: int = 0, reason: str = "signal") -> None:
        """Schedule shutdown from synchronous code running on the loop."""
        if self._task is not None:
            logger.info("shutdown.already_in_progress", {"reason": reason})
            return
        self._task = asyncio.ensure_future(self._run(exit_code, reason))

    def request_shutdown_threadsafe(self, exit_code: int = 0, reason: str = "signal") -> bool:
        """
        Schedule shutdown from a signal handler or foreign thread.

        Returns:
            False if handlers were never installed on a loop
        """
        if self._loop is None or self._loop.is_closed():
            return False
        self._loop.call_soon_threadsafe(self.request_shutdown, exit_code, reason)
        return True

    async def _run(self, exit_code: int, reason: str) -> int:
        logger.info("shutdown.started", {"reason": reason, "exit_code": exit_code})

        await self._step("monitor_stop", self._stop_monitor)
        await self._step("flush", self._final_flush)
        await self._step("destroy", self._destroy_client)
        await self._step("store_close", self._close_store)

        self.exit_code = exit_code
        logger.info("shutdown.completed", {
            "exit_code": exit_code,
            "steps": self.completed_steps,
            "errors": self.step_errors,
        })
        self.completed_steps.append("exit")
        self._exit_func(exit_code)
        return exit_code

    async def _step(self, name: str, action: Callable[[], Any]) -> None:
        try:
            await action()
        except Exception as e:
            self.step_errors[name] = describe_error(e)
            logger.error("shutdown.step_failed", {"step": name, "error": describe_error(e)}, exc_info=True)
        finally:
            self.completed_steps.append(name)

    async def _stop_monitor(self) -> None:
        self.monitor.stop()

    async def _final_flush(self) -> None:
        logger.info("shutdown.session_state", self.tracker.get_summary())

        if self.controller.handle is None:
            logger.warning("shutdown.flush_skipped", {"reason": "client not available for session save"})
            return

        deadline = time.monotonic() + self.final_flush_wait_seconds
        flush_task = asyncio.ensure_future(self.controller.flush())
        done, _ = await asyncio.wait({flush_task}, timeout=self.final_flush_wait_seconds)

        if flush_task in done:
            result = flush_task.result()
            if result.ok:
                logger.info("shutdown.flush_completed", {})
            else:
                logger.warning("shutdown.flush_failed", {
                    "error_code": result.error_code,
                    "message": result.error.message if result.error else None,
                })
            # Let the transport's async persist settle within the same bound
            remaining = deadline - time.monotonic()
            if remaining > 0:
                await self._sleep(remaining)
        else:
            logger.warning("shutdown.flush_timeout", {"wait_seconds": self.final_flush_wait_seconds})

    async def _destroy_client(self) -> None:
        result = await self.controller.destroy()
        logger.info("shutdown.client_destroyed", {"abandoned": result.details.get("abandoned", False)})

    async def _close_store(self) -> None:
        await self.connection.close()

    # === Fault handling ===

    def handle_fatal(self, error: BaseException) -> bool:
        """
        Route an uncaught fault.

        Returns:
            True if shutdown was requested, False if the fault was tolerated
        """
        if is_recoverable_fault(error, self.archive_marker):
            logger.warning("shutdown.archive_missing", {
                "path": str(error.filename),
                "note": "normal for first-time setup, continuing",
            })
            try:
                Path(str(error.filename)).parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.error("shutdown.archive_dir_failed", {"error": describe_error(e)})
            return False

        logger.error("shutdown.uncaught_exception", {
            "error": describe_error(error),
            "error_type": type(error).__name__,
        })
        self.request_shutdown(exit_code=1, reason="fatal")
        return True

    def _loop_exception_handler(self, loop: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> None:
        error = context.get("exception")

        # Unretrieved task/future errors: log only
        if context.get("future") is not None or context.get("task") is not None or error is None:
            logger.error("shutdown.unhandled_rejection", {
                "message": context.get("message"),
                "error": describe_error(error) if error else None,
            })
            return

        self.handle_fatal(error)

    def _thread_excepthook(self, args: threading.ExceptHookArgs) -> None:
        if args.exc_type is SystemExit or self._loop is None:
            return
        error = args.exc_value if args.exc_value is not None else args.exc_type()
        self._loop.call_soon_threadsafe(self.handle_fatal, error)

    def install(
        self,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        signals: Sequence[int] = (),
    ) -> None:
        """
        Register fault handlers on the loop, and optionally signal handlers.

        When a server owns signal handling, leave `signals` empty and route
        its exit hook into request_shutdown().
        """
        self._loop = loop or asyncio.get_running_loop()
        self._loop.set_exception_handler(self._loop_exception_handler)
        threading.excepthook = self._thread_excepthook

        for sig in signals:
            self._loop.add_signal_handler(sig, self.request_shutdown, 0, signal.Signals(sig).name)

        logger.info("shutdown.handlers_registered", {
            "signals": [signal.Signals(s).name for s in signals],
        })
