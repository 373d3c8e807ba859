"""Periodic device location sampling."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, ClassVar

import structlog

from wayfarer.core.errors import LocationUnavailableError
from wayfarer.core.geo import Location, validate_fix

if TYPE_CHECKING:
    from wayfarer.services.device import LocationProvider

logger = structlog.get_logger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 5.0

SampleCallback = Callable[[Location], Awaitable[None]]


class LocationMonitor:
    """
    Cancellable location poller backed by a single asyncio task.

    Only one monitor polls at a time across the process: ``start()`` stops
    whichever monitor is currently running (this one included) before the new
    loop begins. A monitor stopped that way by another one calls its
    ``on_preempted`` hook. ``stop()`` is synchronous and idempotent, so it can
    be called from inside the sample callback.
    """

    _active: ClassVar["LocationMonitor | None"] = None

    def __init__(
        self,
        provider: "LocationProvider",
        interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        fix_timeout_seconds: float | None = None,
        on_preempted: Callable[[], None] | None = None,
    ) -> None:
        """
        Initialize the monitor.

        Args:
            provider: Device location source
            interval_seconds: Delay between samples
            fix_timeout_seconds: Upper bound on a single location fix (None = unbounded)
            on_preempted: Called when another monitor takes over polling
        """
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")

        self.provider = provider
        self.interval_seconds = interval_seconds
        self.fix_timeout_seconds = fix_timeout_seconds
        self.on_preempted = on_preempted
        self._on_sample: SampleCallback | None = None
        self._task: asyncio.Task[None] | None = None
        self._last_task: asyncio.Task[None] | None = None
        self.samples_delivered = 0

    @classmethod
    def active_monitor(cls) -> "LocationMonitor | None":
        """The monitor currently polling, if any."""
        return cls._active

    @property
    def is_running(self) -> bool:
        """Check if the polling loop is live."""
        return self._task is not None and not self._task.done()

    def start(self, on_sample: SampleCallback) -> None:
        """
        Start polling, forwarding each valid sample to ``on_sample``.

        Must be called from within a running event loop.
        """
        previous = LocationMonitor._active
        if previous is not None and previous is not self:
            previous._preempt()
        self.stop()

        self._on_sample = on_sample
        self._task = asyncio.create_task(self._poll_loop())
        self._last_task = self._task
        LocationMonitor._active = self

        logger.info("location_monitor_started", interval_seconds=self.interval_seconds)

    def stop(self) -> None:
        """Cancel the polling loop. Does nothing if already stopped."""
        if LocationMonitor._active is self:
            LocationMonitor._active = None

        if self._task is None:
            return

        task = self._task
        self._task = None
        self._on_sample = None
        task.cancel()

        logger.info("location_monitor_stopped", samples_delivered=self.samples_delivered)

    def _preempt(self) -> None:
        was_running = self.is_running
        self.stop()
        if not was_running or self.on_preempted is None:
            return

        logger.info("location_monitor_preempted")
        try:
            self.on_preempted()
        except Exception as e:
            logger.error("location_monitor_preempt_hook_error", error=str(e), exc_info=True)

    async def wait_stopped(self) -> None:
        """Wait until the most recent polling task has fully unwound."""
        task = self._last_task
        if task is None or task is asyncio.current_task():
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def sample_once(self) -> Location | None:
        """
        Take one location fix and deliver it.

        Unavailable, slow, failing or invalid fixes are logged and skipped;
        the next sample is evaluated normally.

        Returns:
            The delivered location, or None if the sample was skipped
        """
        try:
            raw = await asyncio.wait_for(
                self.provider.get_current_location(), timeout=self.fix_timeout_seconds
            )
        except LocationUnavailableError as e:
            logger.debug("location_sample_skipped", reason="unavailable", error=str(e))
            return None
        except TimeoutError:
            logger.debug("location_sample_skipped", reason="timeout")
            return None
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("location_sample_skipped", reason="error", error=str(e))
            return None

        result = validate_fix(raw)
        if not result.ok or result.location is None:
            logger.warning("location_sample_invalid", fix=repr(raw), error=result.error)
            return None

        callback = self._on_sample
        if callback is None:
            return None

        try:
            await callback(result.location)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("location_sample_callback_error", error=str(e), exc_info=True)
            return None

        self.samples_delivered += 1
        return result.location

    async def _poll_loop(self) -> None:
        """Sample immediately, then once per interval until cancelled."""
        while True:
            await self.sample_once()
            await asyncio.sleep(self.interval_seconds)
