"""Pass scheduler.

Runs sync passes on a cron expression or a fixed interval until stopped.
All passes go through one non-blocking lock, so a trigger that arrives
while a pass is still running is skipped rather than queued.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from croniter import croniter

from dcdn_firewall_sync.config import Config, parse_duration
from dcdn_firewall_sync.exceptions import SetupError
from dcdn_firewall_sync.executor import SyncExecutor
from dcdn_firewall_sync.firewall import AddressBookSyncer, CloudFirewallClient
from dcdn_firewall_sync.models import SyncStatus, SyncTask
from dcdn_firewall_sync.sources import SourceIPProvider, get_source_provider

logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    """Lifecycle state of the scheduler."""

    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class ScheduleMode(str, Enum):
    """How the next pass time is computed."""

    CRON = "cron"
    INTERVAL = "interval"


@dataclass
class SchedulerStatus:
    """Point-in-time view of the scheduler."""

    state: SchedulerState
    mode: ScheduleMode
    next_run: datetime | None = None
    last_task_id: str | None = None
    last_status: SyncStatus | None = None
    passes_run: int = 0
    passes_skipped: int = 0


def _local_now() -> datetime:
    return datetime.now().astimezone()


def to_croniter_expr(expr: str) -> str:
    """Convert a cron expression to croniter field order.

    Six-field expressions carry seconds first (``sec min hour dom mon dow``);
    croniter expects the seconds field last.

    Raises:
        SetupError: If the expression does not have 5 or 6 fields.
    """
    fields = expr.split()
    if len(fields) == 5:
        return " ".join(fields)
    if len(fields) == 6:
        return " ".join(fields[1:] + fields[:1])
    msg = f"Invalid cron expression {expr!r}: expected 5 or 6 fields, got {len(fields)}"
    raise SetupError(msg, setting="cron", value=expr)


def parse_cron(expr: str, base: datetime | None = None) -> croniter:
    """Build a croniter for a 5- or 6-field cron expression.

    Raises:
        SetupError: If the expression is invalid.
    """
    converted = to_croniter_expr(expr)
    try:
        return croniter(converted, base or _local_now())
    except (ValueError, KeyError) as e:
        msg = f"Invalid cron expression {expr!r}: {e}"
        raise SetupError(msg, setting="cron", value=expr) from e


def _parse_setting(name: str, value: str) -> timedelta:
    try:
        return parse_duration(value)
    except ValueError as e:
        msg = f"Invalid {name} {value!r}: {e}"
        raise SetupError(msg, setting=name, value=value) from e


class Scheduler:
    """Runs sync passes on a schedule.

    Example:
        ```python
        scheduler = Scheduler.from_config(config)
        signal.signal(signal.SIGTERM, lambda *_: scheduler.stop())
        scheduler.start()  # blocks until stop()
        ```
    """

    def __init__(
        self,
        config: Config,
        source_provider: SourceIPProvider,
        syncer: AddressBookSyncer,
        executor: SyncExecutor | None = None,
        now: Callable[[], datetime] = _local_now,
    ) -> None:
        """Initialize the scheduler.

        Args:
            config: Root configuration.
            source_provider: Where the source IPs come from.
            syncer: Where address books are written.
            executor: Optional pre-built executor. If not provided, one is
                built from the scheduler settings on first use.
            now: Wall clock returning an aware datetime (for testing).
        """
        self.config = config
        self.source_provider = source_provider
        self.syncer = syncer
        self._executor = executor
        self._now = now

        self.mode = ScheduleMode.CRON if config.scheduler.uses_cron else ScheduleMode.INTERVAL
        self._state = SchedulerState.IDLE
        self._stop_event = threading.Event()
        self._pass_lock = threading.Lock()
        self._status_lock = threading.Lock()

        self._interval: timedelta | None = None
        self._cron_expr: str | None = None
        self._next_run: datetime | None = None
        self._last_task: SyncTask | None = None
        self._passes_run = 0
        self._passes_skipped = 0

    @classmethod
    def from_config(cls, config: Config) -> Scheduler:
        """Create a scheduler wired to the real source and Cloud Firewall clients."""
        return cls(
            config,
            get_source_provider(config),
            CloudFirewallClient(config.firewall, config.sync),
        )

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def executor(self) -> SyncExecutor:
        """Get or create the executor.

        Raises:
            SetupError: If ``scheduler.timeout`` cannot be parsed.
        """
        if self._executor is None:
            timeout = _parse_setting("timeout", self.config.scheduler.timeout)
            self._executor = SyncExecutor(
                self.config, self.source_provider, self.syncer, timeout=timeout
            )
        return self._executor

    def _prepare(self) -> None:
        settings = self.config.scheduler
        # Resolve the executor first so a bad timeout fails start() too
        _ = self.executor

        if self.mode == ScheduleMode.CRON:
            parse_cron(settings.cron, self._now())
            self._cron_expr = to_croniter_expr(settings.cron)
            return

        interval = _parse_setting("interval", settings.interval)
        if interval <= timedelta(0):
            msg = f"Invalid interval {settings.interval!r}: must be positive"
            raise SetupError(msg, setting="interval", value=settings.interval)
        self._interval = interval

    def _next_run_time(self, previous: datetime | None = None) -> datetime:
        """Next fire time; cron times fall strictly after both now and ``previous``."""
        now = self._now()
        if self._cron_expr is not None:
            base = max(now, previous) if previous is not None else now
            return croniter(self._cron_expr, base).get_next(datetime)
        return now + (self._interval or timedelta(0))

    def start(self) -> None:
        """Run the scheduling loop until ``stop()`` is called.

        Raises:
            SetupError: If the cron expression, interval or timeout is invalid.
            RuntimeError: If the scheduler was already started or stopped.
        """
        if self._state != SchedulerState.IDLE:
            msg = f"Scheduler cannot start from state {self._state.value}"
            raise RuntimeError(msg)

        self._prepare()
        self._state = SchedulerState.RUNNING

        if self.mode == ScheduleMode.CRON:
            logger.info("Scheduler started in cron mode: %s", self.config.scheduler.cron)
        else:
            logger.info("Scheduler started in interval mode: every %s", self._interval)

        if self.config.scheduler.run_on_start:
            logger.info("Running initial sync pass")
            self._run_pass()

        next_run: datetime | None = None
        while not self._stop_event.is_set():
            next_run = self._next_run_time(next_run)
            with self._status_lock:
                self._next_run = next_run
            delay = max((next_run - self._now()).total_seconds(), 0.0)
            logger.info("Next sync pass at %s", next_run.strftime("%Y-%m-%d %H:%M:%S"))

            if self._stop_event.wait(delay):
                break
            self._run_pass()

        with self._status_lock:
            self._next_run = None
        self._state = SchedulerState.STOPPED
        logger.info("Scheduler stopped")

    def stop(self) -> None:
        """Stop the scheduler. Safe to call more than once and from signal handlers."""
        if self._state == SchedulerState.STOPPED:
            return
        logger.info("Stopping scheduler")
        self._state = SchedulerState.STOPPED
        self._stop_event.set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the scheduler is stopped.

        Returns:
            True if stopped, False if the timeout elapsed first.
        """
        return self._stop_event.wait(timeout)

    def run_once(self) -> SyncTask | None:
        """Run one pass now.

        Returns:
            The task record, or None if another pass was already running.

        Raises:
            SetupError: If ``scheduler.timeout`` cannot be parsed.
        """
        _ = self.executor
        return self._run_pass()

    def _run_pass(self) -> SyncTask | None:
        if not self._pass_lock.acquire(blocking=False):
            logger.warning("A sync pass is already running; skipping this trigger")
            with self._status_lock:
                self._passes_skipped += 1
            return None

        try:
            task = self.executor.execute()
        except Exception:
            logger.exception("Sync pass failed unexpectedly")
            task = None
        finally:
            self._pass_lock.release()

        with self._status_lock:
            self._passes_run += 1
            if task is not None:
                self._last_task = task

        if task is not None and task.status != SyncStatus.COMPLETED:
            logger.warning("Sync pass %s ended with status %s", task.task_id, task.status.value)
        return task

    def status(self) -> SchedulerStatus:
        """Return a snapshot of the scheduler state."""
        with self._status_lock:
            last = self._last_task
            return SchedulerStatus(
                state=self._state,
                mode=self.mode,
                next_run=self._next_run,
                last_task_id=last.task_id if last else None,
                last_status=last.status if last else None,
                passes_run=self._passes_run,
                passes_skipped=self._passes_skipped,
            )
