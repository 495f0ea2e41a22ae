import asyncio
import logging
from collections.abc import Awaitable, Iterable

from url_monitor.checker import DEFAULT_USER_AGENT, probe
from url_monitor.database import Database
from url_monitor.errors import MonitorAlreadyRunningError, StorageError
from url_monitor.models import AppConfig, CheckResult, URLTarget
from url_monitor.notifier import WebhookNotifier
from url_monitor.tracker import DEFAULT_FAILURE_THRESHOLD, FailureTracker, Transition

logger = logging.getLogger(__name__)


class Monitor:
    """Runs one recurring probe task per target and feeds results downstream.

    Each tick spawns its probe as a separate task, so a slow target never
    delays the schedule of another (or its own next tick).
    """

    def __init__(
        self,
        db: Database,
        notifier: WebhookNotifier | None = None,
        *,
        timeout_seconds: float = 30,
        default_interval_seconds: float = 60,
        user_agent: str = DEFAULT_USER_AGENT,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
    ):
        self.db = db
        self.notifier = notifier or WebhookNotifier()
        self.timeout_seconds = timeout_seconds
        self.default_interval_seconds = default_interval_seconds
        self.user_agent = user_agent
        self.tracker = FailureTracker(failure_threshold)
        self._running = False
        self._timers: dict[URLTarget, asyncio.Task] = {}
        self._in_flight: set[asyncio.Task] = set()

    @classmethod
    def from_config(
        cls, config: AppConfig, db: Database, notifier: WebhookNotifier | None = None
    ) -> "Monitor":
        return cls(
            db,
            notifier or WebhookNotifier(config.notifications),
            timeout_seconds=config.global_.timeout_seconds,
            default_interval_seconds=config.global_.check_interval_seconds,
            user_agent=config.global_.user_agent,
            failure_threshold=config.global_.failure_threshold,
        )

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def scheduled_urls(self) -> list[str]:
        return [target.url for target in self._timers]

    async def start(self, targets: Iterable[URLTarget]) -> None:
        if self._running:
            raise MonitorAlreadyRunningError("Monitor is already running")

        self._running = True
        targets = list(targets)
        logger.info("Starting monitor for %d targets", len(targets))
        for target in targets:
            if target in self._timers:
                logger.warning("Ignoring duplicate target %s (%s)", target.name, target.url)
                continue
            interval = target.interval_seconds or self.default_interval_seconds
            self._spawn(self.check_target(target), target)
            self._timers[target] = asyncio.create_task(
                self._schedule(target, interval), name=f"schedule:{target.url}"
            )
            logger.info("Scheduled %s (%s) every %ss", target.name, target.url, interval)

    async def stop(self) -> None:
        """Cancel all schedules. Probes already in flight are left to finish."""
        if not self._running:
            return

        logger.info("Stopping monitor")
        self._running = False
        timers = list(self._timers.values())
        for task in timers:
            task.cancel()
        self._timers.clear()
        await asyncio.gather(*timers, return_exceptions=True)
        logger.info("Monitor stopped")

    async def drain(self) -> None:
        """Wait until every in-flight probe has completed."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    async def _schedule(self, target: URLTarget, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self._spawn(self.check_target(target), target)

    def _spawn(self, coro: Awaitable[CheckResult], target: URLTarget) -> None:
        task = asyncio.create_task(coro, name=f"probe:{target.url}")
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def check_target(self, target: URLTarget) -> CheckResult:
        result = await probe(target, self.timeout_seconds, self.user_agent)

        try:
            await self.db.insert_result(result)
        except StorageError:
            logger.exception("Failed to store result for %s", target.name)

        await self._track(target, result)
        return result

    async def _track(self, target: URLTarget, result: CheckResult) -> None:
        async with self.tracker.lock(target.url):
            transition = self.tracker.record(target.url, result.success)
            if transition is Transition.FAILURE_ALERT:
                failures = self.tracker.streak(target.url).count
                logger.warning("DOWN: %s failed %d consecutive checks", target.name, failures)
                await self._notify(
                    self.notifier.send_failure_alert(target, failures, result.error_message),
                    target,
                )
            elif transition is Transition.RECOVERY_ALERT:
                logger.info("RECOVERED: %s is back up", target.name)
                await self._notify(self.notifier.send_recovery_alert(target), target)

    async def _notify(self, send: Awaitable[bool], target: URLTarget) -> None:
        try:
            await send
        except Exception:
            logger.exception("Notifier failed for %s", target.name)

    async def run_cycle(self, targets: Iterable[URLTarget]) -> list[CheckResult]:
        """Probe every target once, concurrently, and wait for all of them."""
        targets = list(targets)
        logger.info("Running monitoring cycle for %d targets", len(targets))
        outcomes = await asyncio.gather(
            *(self.check_target(target) for target in targets),
            return_exceptions=True,
        )

        results = []
        for target, outcome in zip(targets, outcomes):
            if isinstance(outcome, Exception):
                logger.error("Unexpected error checking %s: %s", target.name, outcome)
                continue
            results.append(outcome)

        up = sum(1 for r in results if r.success)
        logger.info("Monitoring cycle completed: %d/%d up", up, len(targets))
        return results
