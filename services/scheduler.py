"""
Discovery Scheduler Module

Runs discovery for every active account on the interval of each enabled
schedule, plus a periodic sweep that expires stale opportunities. Job
failures are logged and never stop the scheduler.
"""

import threading
from typing import Dict, Optional, Tuple, Union

import schedule

from config import settings
from data.models import AccountStatus, DiscoveryType
from data.protocols import EngagementStore
from services.discovery_service import DiscoveryService
from utils.exceptions import NotFoundError
from utils.logger import get_logger, sanitize_error

logger = get_logger(__name__)

SWEEP_TAG = "expiration-sweep"
DISCOVERY_TAG = "discovery"


class DiscoveryScheduler:
    """Interval scheduler for discovery runs and the expiration sweep."""

    def __init__(self, store: EngagementStore, discovery: DiscoveryService,
                 sweep_minutes: int = settings.EXPIRATION_SWEEP_MINUTES,
                 poll_seconds: float = 1.0):
        self._store = store
        self._discovery = discovery
        self._sweep_minutes = sweep_minutes
        self._poll_seconds = poll_seconds
        self._scheduler = schedule.Scheduler()
        self._jobs: Dict[Tuple[str, DiscoveryType], schedule.Job] = {}
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def jobs(self) -> Dict[Tuple[str, DiscoveryType], schedule.Job]:
        return dict(self._jobs)

    def initialize(self) -> int:
        """
        Register one job per enabled schedule of every active account.

        Returns:
            int: Number of discovery jobs registered.
        """
        self._scheduler.clear()
        self._jobs.clear()

        for account in self._store.list_accounts():
            if account.status != AccountStatus.ACTIVE:
                logger.info(f"Skipping account {account.handle} with status {account.status.value}")
                continue
            for entry in account.schedules:
                if not entry.enabled:
                    continue
                job = (self._scheduler.every(entry.interval_minutes).minutes
                       .do(self.run_discovery, account.id, entry.type)
                       .tag(DISCOVERY_TAG, account.id))
                self._jobs[(account.id, entry.type)] = job
                logger.info(f"Scheduled {entry.type.value} discovery for {account.handle} "
                            f"every {entry.interval_minutes} minutes")

        self._scheduler.every(self._sweep_minutes).minutes.do(self.run_sweep).tag(SWEEP_TAG)
        logger.info(f"Scheduler initialized with {len(self._jobs)} discovery jobs")
        return len(self._jobs)

    def reload(self) -> int:
        """Re-read accounts and rebuild all jobs."""
        logger.info("Reloading discovery schedules")
        return self.initialize()

    def run_discovery(self, account_id: str, discovery_type: DiscoveryType) -> int:
        """Job body: one discovery run. Returns the number of new opportunities (0 on failure)."""
        try:
            created = self._discovery.discover(account_id, discovery_type)
            return len(created)
        except Exception as e:
            logger.error(f"Scheduled {discovery_type.value} discovery for {account_id} failed: "
                         f"{sanitize_error(e)}")
            return 0

    def run_sweep(self) -> int:
        """Job body: expire stale opportunities."""
        try:
            return self._discovery.expire_opportunities()
        except Exception as e:
            logger.error(f"Expiration sweep failed: {sanitize_error(e)}")
            return 0

    def trigger_now(self, account_id: str, discovery_type: Union[str, DiscoveryType]) -> int:
        """
        Run a registered discovery job immediately, outside its interval.

        Raises:
            NotFoundError: No job is registered for this account and type.
        """
        discovery_type = DiscoveryType(discovery_type)
        if (account_id, discovery_type) not in self._jobs:
            raise NotFoundError("Discovery job", f"{account_id}:{discovery_type.value}")
        logger.info(f"Manually triggering {discovery_type.value} discovery for {account_id}")
        return self.run_discovery(account_id, discovery_type)

    def run_pending(self) -> None:
        self._scheduler.run_pending()

    def run_all(self) -> None:
        """Run every job once right away (used at startup)."""
        self._scheduler.run_all()

    def start(self) -> None:
        """Run pending jobs on a background thread until stop() is called."""
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="discovery-scheduler", daemon=True)
        self._thread.start()
        logger.info("Scheduler started")

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            self._scheduler.run_pending()
            self._stop_event.wait(self._poll_seconds)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Scheduler stopped")

    def wait(self) -> None:
        """Block until stop() is called from another thread or a signal handler."""
        while not self._stop_event.wait(self._poll_seconds):
            pass
