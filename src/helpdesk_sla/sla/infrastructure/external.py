"""
SLA External Service Integrations
==================================

Runtime services around the SLA module:
- watchdog observer that hot-reloads the YAML policy file
- APScheduler job that periodically sweeps open tickets
"""

from pathlib import Path
from typing import Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from helpdesk_sla.shared.infrastructure.logging import get_logger
from helpdesk_sla.sla.infrastructure.repositories import YAMLPolicyRepository

logger = get_logger(__name__)


class PolicyFileHandler(FileSystemEventHandler):
    """Watchdog event handler for SLA policy file changes."""

    def __init__(self, repository: YAMLPolicyRepository, policy_path: Path):
        self.repository = repository
        self.policy_path = policy_path
        super().__init__()

    def on_modified(self, event):
        """Handle file modification event."""
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.policy_path.resolve():
            logger.info(f"SLA policy file changed: {event.src_path}")
            self.repository.reload()

    on_created = on_modified


class PolicyFileWatcher:
    """
    Hot-reload support for YAMLPolicyRepository.

    Uses watchdog to monitor the policy file and reload policies
    without restarting the host application.
    """

    def __init__(self, repository: YAMLPolicyRepository):
        self._repository = repository
        self._observer = None

    @property
    def is_watching(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        """
        Start watching the policy file for changes.

        Skips watching if:
        - The file doesn't exist
        - The platform does not support file watching (e.g. some containers)
        """
        path = self._repository.path
        if not path.exists():
            logger.info(f"SLA policy file doesn't exist, skipping file watch: {path}")
            return

        try:
            self._observer = Observer()
            handler = PolicyFileHandler(self._repository, path)
            self._observer.schedule(handler, str(path.parent), recursive=False)
            self._observer.start()
            logger.info(f"Started watching SLA policy file: {path}")
        except OSError as e:
            logger.warning(f"File watching not available, using static policies: {e}")
            self._observer = None

    def stop(self) -> None:
        """Stop watching (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None


class SLASweepScheduler:
    """
    Wrapper for APScheduler running the periodic open-ticket sweep.

    Request-triggered checks only see tickets that get touched; the sweep
    re-checks every open ticket on an interval.
    """

    def __init__(self, interval_seconds: int = 300):
        self.interval_seconds = interval_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(self, job_func: Callable[[], Awaitable]) -> None:
        """Start the scheduler with the given coroutine function."""
        if self._running:
            logger.warning("SLA sweep scheduler already running")
            return

        if self.interval_seconds <= 0:
            logger.info("SLA sweep disabled (interval is 0)")
            return

        self._scheduler = AsyncIOScheduler()

        self._scheduler.add_job(
            job_func,
            "interval",
            seconds=self.interval_seconds,
            id="sla_sweep",
            name="SLA Open Ticket Sweep",
            misfire_grace_time=60,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )

        self._scheduler.start()
        self._running = True

        logger.info(
            "SLA sweep scheduler started",
            extra={"interval_seconds": self.interval_seconds}
        )

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=True)

        self._running = False
        logger.info("SLA sweep scheduler stopped")

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running
