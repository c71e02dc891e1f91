"""
Backup orchestration for httpbackup.

The Orchestrator is the single authority for when a backup run happens:
- Periodic runs every IntervalMinutes (0 disables them)
- Manual "run now" requests from the web surface
- Config changes, which re-arm or disable the periodic timer
- Daily retention sweep

All of these arrive as events on one channel and are consumed serially by the
control loop. Runs are dispatched to a worker thread so the loop keeps
observing events and shutdown while a long backup pass is in progress. At most
one run executes at any time; requests arriving meanwhile are dropped.
"""

import enum
import logging
import threading
from datetime import datetime
from typing import Callable, Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from httpbackup.backup.retention import enforce_retention
from httpbackup.backup.runner import Runner
from httpbackup.config import max_parallel_from_env
from httpbackup.events import Event, EventChannel, EventType
from httpbackup.settings import Config, ConfigError, load_or_create


logger = logging.getLogger(__name__)

TICK_JOB_ID = 'backup_tick'
RETENTION_JOB_ID = 'retention_cleanup'


class SchedulerState(enum.Enum):
    DISABLED = 'disabled'
    IDLE = 'idle'
    RUNNING = 'running'
    STOPPED = 'stopped'


class RunState:
    """
    The "a run is in progress" flag.

    try_acquire() is an atomic compare-and-set: exactly one caller wins until
    release() is called.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._running = False

    def try_acquire(self) -> bool:
        with self._lock:
            if self._running:
                return False
            self._running = True
            return True

    def release(self):
        with self._lock:
            self._running = False

    @property
    def running(self) -> bool:
        with self._lock:
            return self._running


def normalize_interval(minutes: int) -> int:
    """Negative intervals become 1 minute; 0 stays 0 (scheduler disabled)."""
    if minutes < 0:
        return 1
    return minutes


def _default_runner_factory() -> Runner:
    # Environment is read per run so HTTPBACKUP_MAX_PARALLEL changes apply without restart
    return Runner(max_parallel=max_parallel_from_env())


class Orchestrator:
    """
    Owns the scheduling timer and the run state, and drives the Runner.
    """

    def __init__(
        self,
        config_path: str,
        events: Optional[EventChannel] = None,
        runner_factory: Optional[Callable[[], Runner]] = None,
        scheduler=None
    ):
        """
        Args:
            config_path: Path of the JSON config file (re-read at every decision)
            events: Event channel shared with the web surface
            runner_factory: Callable returning a Runner for each run
            scheduler: APScheduler scheduler providing the tick timer
                (default: a BackgroundScheduler)
        """
        self.config_path = config_path
        self.events = events or EventChannel()
        self.runner_factory = runner_factory or _default_runner_factory
        self.run_state = RunState()
        self.interval_minutes = 0
        self.last_run = None

        # Cancellation token for in-flight downloads, set on shutdown
        self.cancel_event = threading.Event()

        self._stopping = threading.Event()
        self._last_good: Optional[Config] = None
        self._run_thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        # Serializes the daily sweep against runs touching the same site directories
        self._sweep_lock = threading.Lock()

        if scheduler is None:
            scheduler = BackgroundScheduler(
                executors={'default': ThreadPoolExecutor(max_workers=2)},
                job_defaults={
                    'coalesce': True,  # Combine missed ticks into one
                    'max_instances': 1,
                    'misfire_grace_time': 60
                }
            )
        self.scheduler = scheduler

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self):
        """
        Load the initial config, arm the timer and start the scheduler.

        Raises:
            ConfigError: If the config cannot be loaded (fatal at startup)
        """
        cfg = load_or_create(self.config_path)
        with self._lock:
            self._last_good = cfg

        interval = normalize_interval(cfg.interval_minutes)
        if interval > 0:
            self._arm_timer(interval)
            logger.info(f"Scheduler started (interval_minutes={interval})")
        else:
            self.interval_minutes = 0
            logger.info("Scheduler disabled (IntervalMinutes=0)")

        self.scheduler.add_job(
            func=self._retention_sweep,
            trigger=CronTrigger(hour=2, minute=0),
            id=RETENTION_JOB_ID,
            name='Daily Retention Cleanup',
            replace_existing=True
        )

        if not self.scheduler.running:
            self.scheduler.start()

    def serve_forever(self, poll_interval: float = 0.5):
        """
        Run the control loop until stop() is called.

        Events are handled one at a time; handling never blocks on a backup run.
        """
        logger.info("Orchestrator loop started")
        while not self._stopping.is_set():
            event = self.events.get(timeout=poll_interval)
            if event is None or self._stopping.is_set():
                continue
            try:
                self.handle_event(event)
            except Exception:
                logger.exception(f"Failed to handle {event.type.value} event")
        logger.info("Orchestrator loop stopped")

    def stop(self, wait: bool = True, timeout: Optional[float] = None):
        """
        Stop processing ticks and events.

        The in-flight run (if any) is not killed; its downloads see the
        cancellation token at their next checkpoint.

        Args:
            wait: Wait for the in-flight run to finish
            timeout: Maximum seconds to wait
        """
        if not self._stopping.is_set():
            logger.info("Shutdown requested")
        self._stopping.set()
        self.cancel_event.set()

        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

        if wait:
            self.wait_for_run(timeout)

    def wait_for_run(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the current run (if any) finishes.

        Returns:
            True if no run is in progress afterwards
        """
        with self._lock:
            thread = self._run_thread
        if thread is not None and thread.is_alive():
            thread.join(timeout)
            return not thread.is_alive()
        return True

    @property
    def stopped(self) -> bool:
        return self._stopping.is_set()

    def current_config(self) -> Optional[Config]:
        """Last successfully loaded config."""
        with self._lock:
            return self._last_good

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def handle_event(self, event: Event) -> bool:
        """
        Apply one event.

        Returns:
            True if a run was started
        """
        if self._stopping.is_set():
            return False

        if event.type == EventType.TICK:
            if self.interval_minutes == 0:
                # Tick queued before the scheduler was disabled
                logger.debug("Ignoring tick while scheduler is disabled")
                return False
            return self.trigger_run('ticker')

        if event.type == EventType.RUN_NOW:
            logger.info("Event: run now")
            return self.trigger_run('run-now')

        if event.type == EventType.CONFIG_CHANGED:
            logger.info("Event: config changed -> reloading scheduler")
            self.reload()
            return False

        logger.warning(f"Ignoring unknown event: {event!r}")
        return False

    def trigger_run(self, reason: str) -> bool:
        """
        Start a backup run on a worker thread unless one is already running.

        Returns:
            True if a run was started, False if it was skipped
        """
        if self._stopping.is_set():
            return False

        if not self.run_state.try_acquire():
            logger.warning(f"Run skipped: already running (reason={reason})")
            return False

        thread = threading.Thread(
            target=self._run_pass,
            args=(reason,),
            name='backup-run',
            daemon=True
        )
        with self._lock:
            self._run_thread = thread
        thread.start()
        return True

    def reload(self):
        """Re-read the config and re-arm or disable the timer if the interval changed."""
        cfg = self._load_config()
        if cfg is None:
            return

        new_interval = normalize_interval(cfg.interval_minutes)
        if new_interval == self.interval_minutes:
            return

        if new_interval == 0:
            self._disarm_timer()
            logger.info("Scheduler disabled (IntervalMinutes=0)")
        elif self.interval_minutes == 0:
            self._arm_timer(new_interval)
            logger.info(f"Scheduler enabled (interval_minutes={new_interval})")
        else:
            self._arm_timer(new_interval)
            logger.info(f"Scheduler interval updated (interval_minutes={new_interval})")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _arm_timer(self, minutes: int):
        """Replace the tick job with a new one firing every `minutes`."""
        self.scheduler.add_job(
            func=self._emit_tick,
            trigger=IntervalTrigger(minutes=minutes),
            id=TICK_JOB_ID,
            name=f"Backup every {minutes} min",
            replace_existing=True
        )
        self.interval_minutes = minutes

    def _disarm_timer(self):
        try:
            self.scheduler.remove_job(TICK_JOB_ID)
        except JobLookupError:
            pass
        self.interval_minutes = 0

    def _emit_tick(self):
        self.events.publish(Event(EventType.TICK))

    def _load_config(self) -> Optional[Config]:
        """
        Read the config fresh from disk.

        On failure the last good config is returned (None if there is none).
        """
        try:
            cfg = load_or_create(self.config_path)
        except ConfigError as e:
            logger.error(f"Failed to reload config: {e}")
            with self._lock:
                if self._last_good is not None:
                    logger.warning("Using last good config")
                return self._last_good

        with self._lock:
            self._last_good = cfg
        return cfg

    def _run_pass(self, reason: str):
        started_at = datetime.now()
        results = []
        try:
            cfg = self._load_config()
            if cfg is None:
                logger.error("Run aborted: no usable config")
                return

            logger.info(f"Run started (reason={reason})")
            runner = self.runner_factory()
            with self._sweep_lock:
                results = runner.run_all(cfg.snapshot(), self.cancel_event)
        except Exception:
            logger.exception(f"Run failed (reason={reason})")
        finally:
            self.last_run = {
                'reason': reason,
                'started_at': started_at.isoformat(),
                'finished_at': datetime.now().isoformat(),
                'sites': len(results),
                'succeeded': sum(1 for r in results if r.success),
                'failed': sum(1 for r in results if not r.success and not r.cancelled),
                'cancelled': sum(1 for r in results if r.cancelled)
            }
            self.run_state.release()
            logger.info(f"Run finished (reason={reason}, state={self.state.value})")

    def _retention_sweep(self):
        """
        Daily retention pass over all sites; skipped while a run is active.

        The sweep never claims the run flag, so run-now and ticks are still
        accepted while it works; such a run waits for the sweep to finish
        before downloading.
        """
        if self.run_state.running or not self._sweep_lock.acquire(blocking=False):
            logger.info("Retention sweep skipped: run in progress")
            return
        try:
            cfg = self._load_config()
            if cfg is not None:
                enforce_retention(cfg)
        except Exception:
            logger.exception("Retention sweep failed")
        finally:
            self._sweep_lock.release()

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def state(self) -> SchedulerState:
        if self._stopping.is_set():
            return SchedulerState.STOPPED
        if self.run_state.running:
            return SchedulerState.RUNNING
        if self.interval_minutes == 0:
            return SchedulerState.DISABLED
        return SchedulerState.IDLE

    def status(self) -> dict:
        """
        Snapshot of the orchestrator for the dashboard.

        Returns:
            Dict with state, interval, next run time and last run summary
        """
        next_run = None
        if self.interval_minutes > 0:
            try:
                job = self.scheduler.get_job(TICK_JOB_ID)
            except Exception as e:
                logger.warning(f"Failed to look up tick job: {e}")
                job = None
            run_time = getattr(job, 'next_run_time', None) if job else None
            if isinstance(run_time, datetime):
                next_run = run_time.isoformat()

        return {
            'state': self.state.value,
            'interval_minutes': self.interval_minutes,
            'running': self.run_state.running,
            'next_run': next_run,
            'last_run': self.last_run
        }
