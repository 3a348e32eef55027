"""
Session Health Monitor

Periodic probe cross-checking the recorded session state against the store
and the transport, and issuing corrective calls into the controller.

Each cycle runs, in order: store check, client check (with flush), drift
recovery, resource sampling. A failing step is logged and the next step
still runs; a cycle never raises. Cycles are serialized: a timer tick that
finds a cycle still running is skipped.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, UTC
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

import psutil

from session_bridge.core.logger import get_logger
from session_bridge.core.utils import describe_error
from session_bridge.domain.interfaces.storage import StoreConnection
from session_bridge.domain.models.session_lifecycle import ClientState
from session_bridge.domain.services.client_controller import ClientLifecycleController
from session_bridge.domain.services.session_tracker import SessionStateTracker
from session_bridge.infrastructure.config.settings import HealthSettings

logger = get_logger(__name__)


class HealthStatus(Enum):
    """Health status levels"""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    SKIPPED = "skipped"


@dataclass
class HealthCheckResult:
    """Result of one step of a health cycle"""
    name: str
    status: HealthStatus
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    duration_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "message": self.message,
            "details": self.details,
            "duration_ms": round(self.duration_ms, 2),
        }


@dataclass
class HealthReport:
    """Outcome of a full health cycle"""
    cycle: int
    started_at: datetime
    checks: Dict[str, HealthCheckResult] = field(default_factory=dict)
    duration_ms: float = 0.0

    @property
    def healthy(self) -> bool:
        return all(c.status in (HealthStatus.HEALTHY, HealthStatus.SKIPPED) for c in self.checks.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cycle": self.cycle,
            "started_at": self.started_at.isoformat(),
            "healthy": self.healthy,
            "duration_ms": round(self.duration_ms, 2),
            "checks": {name: result.to_dict() for name, result in self.checks.items()},
        }


def sample_memory_usage() -> Dict[str, Any]:
    """Process and system memory, in MB / percent"""
    memory_info = psutil.Process().memory_info()
    return {
        "rss_mb": round(memory_info.rss / 1024 / 1024),
        "vms_mb": round(memory_info.vms / 1024 / 1024),
        "system_memory_percent": psutil.virtual_memory().percent,
    }


class SessionHealthMonitor:
    """Periodic session health probe with self-healing recovery"""

    def __init__(
        self,
        controller: ClientLifecycleController,
        connection: StoreConnection,
        tracker: SessionStateTracker,
        settings: HealthSettings,
        memory_sampler: Callable[[], Dict[str, Any]] = sample_memory_usage,
    ):
        self.controller = controller
        self.connection = connection
        self.tracker = tracker
        self.settings = settings
        self._memory_sampler = memory_sampler

        self._cycle_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._cycle_count = 0
        self._last_report: Optional[HealthReport] = None

        # Recovery backoff (only active when recovery_backoff_max_cycles > 0)
        self._recovery_failures = 0
        self._recovery_skip_remaining = 0

    @property
    def interval_seconds(self) -> float:
        return self.settings.interval_minutes * 60

    @property
    def last_report(self) -> Optional[HealthReport]:
        return self._last_report

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # === Loop control ===

    def start(self) -> None:
        """Start the monitoring loop; the first cycle runs immediately."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._monitoring_loop(), name="SessionHealthMonitor")
        logger.info("health_monitor.started", {"interval_minutes": self.settings.interval_minutes})

    def stop(self) -> None:
        """
        Stop scheduling cycles. A cycle already running is left to finish;
        it is never cancelled.
        """
        if self._stop_event.is_set():
            return
        self._stop_event.set()
        logger.info("health_monitor.stopped", {"cycles_run": self._cycle_count})

    async def _monitoring_loop(self):
        while not self._stop_event.is_set():
            try:
                await self.run_cycle()
            except Exception as e:
                logger.error("health_monitor.loop_error", {"error": describe_error(e)}, exc_info=True)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass

    # === Cycle ===

    async def run_cycle(self) -> Optional[HealthReport]:
        """
        Run one health cycle.

        Returns:
            The report, or None if another cycle was still running
        """
        if self._cycle_lock.locked():
            logger.warning("health_monitor.cycle_skipped", {"reason": "previous cycle still running"})
            return None

        async with self._cycle_lock:
            self._cycle_count += 1
            report = HealthReport(cycle=self._cycle_count, started_at=datetime.now(UTC))
            started = time.monotonic()
            logger.info("health_monitor.cycle_started", {"cycle": report.cycle})

            steps = (
                ("store", self._check_store),
                ("client", self._check_client),
                ("recovery", self._check_drift),
                ("resources", self._sample_resources),
            )
            for name, step in steps:
                report.checks[name] = await self._run_step(name, step)

            report.duration_ms = (time.monotonic() - started) * 1000
            self._last_report = report
            logger.info("health_monitor.cycle_completed", {
                "cycle": report.cycle,
                "healthy": report.healthy,
                "duration_ms": round(report.duration_ms, 2),
            })
            return report

    async def _run_step(self, name: str, step: Callable[[], Awaitable[HealthCheckResult]]) -> HealthCheckResult:
        started = time.monotonic()
        try:
            result = await step()
        except Exception as e:
            logger.error("health_monitor.check_failed", {
                "check": name,
                "error": describe_error(e),
                "error_type": type(e).__name__,
            })
            result = HealthCheckResult(
                name=name,
                status=HealthStatus.UNHEALTHY,
                message=f"Check execution failed: {describe_error(e)}",
                details={"error": describe_error(e)},
            )
        result.duration_ms = (time.monotonic() - started) * 1000
        return result

    async def _check_store(self) -> HealthCheckResult:
        if await self.connection.ping():
            logger.info("health_monitor.store_status", {"status": "connected"})
            return HealthCheckResult("store", HealthStatus.HEALTHY, "Store connected")

        logger.warning("health_monitor.store_status", {"status": "disconnected", "action": "reconnect"})
        if await self.connection.reconnect():
            return HealthCheckResult(
                "store", HealthStatus.DEGRADED, "Store reconnected", {"reconnected": True}
            )
        return HealthCheckResult(
            "store", HealthStatus.UNHEALTHY, "Store reconnection failed", {"reconnected": False}
        )

    async def _check_client(self) -> HealthCheckResult:
        flags = self.controller.client_flags()

        if not flags["exists"]:
            if self.controller.state == ClientState.UNINITIALIZED:
                # Startup initialize did not get through (e.g. store was down)
                result = await self.controller.initialize()
                return HealthCheckResult(
                    "client",
                    HealthStatus.DEGRADED if result.ok else HealthStatus.UNHEALTHY,
                    "Pending client initialization attempted",
                    {"initialize": result.to_dict(), "flags": flags},
                )
            logger.error("health_monitor.client_unavailable", {"state": flags["state"]})
            return HealthCheckResult("client", HealthStatus.UNHEALTHY, "Client not available", {"flags": flags})

        details: Dict[str, Any] = {"flags": flags}
        authenticated = self.controller.is_authenticated()
        logger.info("health_monitor.client_status", {
            "authenticated": authenticated,
            "initialized": flags["initialized"],
            "state": flags["state"],
        })

        status = HealthStatus.HEALTHY if authenticated and flags["initialized"] else HealthStatus.DEGRADED
        if authenticated:
            flush = await self.controller.flush()
            details["flush"] = flush.to_dict()
            if not flush.ok:
                status = HealthStatus.DEGRADED

        logger.info("health_monitor.session_state", self.tracker.get_summary())
        return HealthCheckResult("client", status, f"Client {flags['state']}", details)

    async def _check_drift(self) -> HealthCheckResult:
        drifted = self.controller.has_drifted()
        degraded = self.controller.state == ClientState.DEGRADED

        if not drifted and not degraded:
            if self._recovery_failures:
                self._reset_backoff()
            return HealthCheckResult("recovery", HealthStatus.HEALTHY, "No drift detected")

        if self._recovery_skip_remaining > 0:
            self._recovery_skip_remaining -= 1
            logger.info("health_monitor.recovery_backoff", {
                "skip_remaining": self._recovery_skip_remaining,
                "failures": self._recovery_failures,
            })
            return HealthCheckResult(
                "recovery", HealthStatus.SKIPPED, "Recovery deferred by backoff",
                {"failures": self._recovery_failures},
            )

        logger.warning("health_monitor.recovery_triggered", {
            "drift": drifted,
            "state": self.controller.state.value,
        })
        result = await self.controller.recover()
        if result.ok:
            self._reset_backoff()
            logger.info("health_monitor.recovery_succeeded", {"state": result.state})
            return HealthCheckResult("recovery", HealthStatus.DEGRADED, "Client re-initialized", result.to_dict())

        self._register_recovery_failure()
        logger.error("health_monitor.recovery_failed", {
            "error_code": result.error_code,
            "failures": self._recovery_failures,
        })
        return HealthCheckResult("recovery", HealthStatus.UNHEALTHY, "Client re-initialization failed", result.to_dict())

    def _register_recovery_failure(self) -> None:
        self._recovery_failures += 1
        max_cycles = self.settings.recovery_backoff_max_cycles
        if max_cycles > 0:
            self._recovery_skip_remaining = min(2 ** (self._recovery_failures - 1), max_cycles)

    def _reset_backoff(self) -> None:
        self._recovery_failures = 0
        self._recovery_skip_remaining = 0

    async def _sample_resources(self) -> HealthCheckResult:
        usage = self._memory_sampler()
        logger.info("health_monitor.memory_usage", usage)
        return HealthCheckResult("resources", HealthStatus.HEALTHY, "Memory sampled", usage)
