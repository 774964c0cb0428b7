from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict
import inspect
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from ..core.errors import NookError
from ..core.windows import ScanPhase, active_scan_phase, scan_window

logger = logging.getLogger(__name__)

Token = Dict[str, Any]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AnchorRefresher:
    """Keeps a fresh attendance token on the host's screen.

    Re-issues every ``interval_seconds`` while a scan window is open and
    immediately when the open window changes. Between windows it shows
    nothing and keeps ticking; it tears itself down once the exit window
    has closed. After ``stop()`` it never calls ``issue`` again.
    """

    def __init__(
        self,
        *,
        start: datetime,
        duration_minutes: int,
        issue: Callable[[ScanPhase], Awaitable[Token]],
        on_token: Callable[[Token], Any],
        scheduler: AsyncIOScheduler,
        interval_seconds: int = 60,
        clock: Callable[[], datetime] = _utcnow,
        on_error: Callable[[NookError], Any] | None = None,
    ):
        self.start_time = start
        self.duration_minutes = duration_minutes
        self._issue = issue
        self._on_token = on_token
        self._on_error = on_error
        self._scheduler = scheduler
        self._interval = interval_seconds
        self._clock = clock
        self._job = None
        self._stopped = False
        self.phase: ScanPhase | None = None
        self.token: Token | None = None

    @property
    def running(self) -> bool:
        return self._job is not None and not self._stopped

    async def start(self) -> None:
        self._stopped = False
        await self.tick()
        if not self._stopped and self._job is None:
            self._job = self._scheduler.add_job(
                self.tick, "interval", seconds=self._interval, max_instances=1, coalesce=True,
            )

    def stop(self) -> None:
        self._stopped = True
        if self._job is not None:
            try:
                self._job.remove()
            except Exception:
                logger.debug("anchor job already gone")
            self._job = None

    async def tick(self) -> None:
        if self._stopped:
            return
        now = self._clock()
        phase = active_scan_phase(self.start_time, self.duration_minutes, now)
        if phase is None:
            if self.phase is not None:
                logger.info("%s window closed; waiting for the next one", self.phase.value)
            self.phase = None
            self.token = None
            _, exit_closes = scan_window(self.start_time, self.duration_minutes, ScanPhase.EXIT)
            if now > exit_closes:
                logger.info("exit window over; anchor refresh stopped")
                self.stop()
            return
        if phase != self.phase:
            logger.info("anchor switching to %s scans", phase.value)
        await self._refresh(phase)

    async def _refresh(self, phase: ScanPhase) -> None:
        try:
            token = await self._issue(phase)
        except NookError as e:
            logger.info("anchor token refresh rejected: %s", e.code)
            if self._on_error is not None:
                self._on_error(e)
            self.stop()
            return
        if self._stopped:
            return
        self.phase = phase
        self.token = token
        result = self._on_token(token)
        if inspect.isawaitable(result):
            await result
