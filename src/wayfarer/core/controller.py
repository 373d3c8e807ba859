"""Quest progression state machine.

Drives a user through a quest:

    IDLE -> WAITING -> ACTIVE -> NAVIGATING -> ARRIVED -> SUBMITTING -> COMPLETED
                         ^                                   |
                         +--------- next step ---------------+

plus ENDED when the user abandons the quest. The controller is the only owner
of ``UserQuestState``; callers observe it through ``state`` (an immutable
snapshot) or by subscribing to events.

Every leg and every submission carries a generation number. Cancelling a
route, abandoning, backgrounding or starting a newer leg bumps it, and any
RPC result that comes back for an older generation is dropped.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any, TypeVar

import structlog

from wayfarer.config import get_settings
from wayfarer.core.arrival import ArrivalDetector
from wayfarer.core.errors import (
    BackendError,
    DuplicateSubmissionError,
    InvalidTransitionError,
    LocationUnavailableError,
    MissingLocationError,
    RouteUnavailableError,
    StepSequenceError,
)
from wayfarer.core.geo import Location, validate_fix
from wayfarer.core.monitor import LocationMonitor
from wayfarer.core.rank import RankProfile, check_level_up
from wayfarer.core.steps import validate_step_sequence
from wayfarer.services.backend import QuestBackend
from wayfarer.services.device import LocationProvider
from wayfarer.services.models import CompleteStepResponse, Quest, QuestStep, Route
from wayfarer.services.routing import RouteProvider
from wayfarer.services.submission import StepSubmitter, Submission

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class QuestPhase(str, Enum):
    """Phase of the user's in-progress quest."""

    IDLE = "idle"  # No quest joined
    WAITING = "waiting"  # Joined, scheduled start still in the future
    ACTIVE = "active"  # Ready to navigate to the current step
    NAVIGATING = "navigating"  # Route leg in progress, location polled
    ARRIVED = "arrived"  # Inside the current step's geofence
    SUBMITTING = "submitting"  # Step submission in flight
    COMPLETED = "completed"  # All steps done, reward granted
    ENDED = "ended"  # Abandoned by the user


JOINABLE_PHASES = frozenset({QuestPhase.IDLE, QuestPhase.COMPLETED, QuestPhase.ENDED})
ABANDONABLE_PHASES = frozenset(
    {
        QuestPhase.WAITING,
        QuestPhase.ACTIVE,
        QuestPhase.NAVIGATING,
        QuestPhase.ARRIVED,
        QuestPhase.SUBMITTING,
    }
)


@dataclass(frozen=True)
class UserQuestState:
    """
    Snapshot of the user's progress through one quest.

    Instances are immutable; the controller replaces them on every change.
    """

    quest_id: str
    current_step_number: int
    total_steps: int
    phase: QuestPhase
    last_known_location: Location | None = None
    active_route: Route | None = None

    def __post_init__(self) -> None:
        if not 1 <= self.current_step_number <= self.total_steps:
            raise ValueError(
                f"current_step_number {self.current_step_number} outside 1..{self.total_steps}"
            )
        if (self.active_route is not None) != (self.phase is QuestPhase.NAVIGATING):
            raise ValueError("active_route must be set exactly while navigating")

    @property
    def completed_steps(self) -> int:
        if self.phase is QuestPhase.COMPLETED:
            return self.total_steps
        return self.current_step_number - 1

    @property
    def is_last_step(self) -> bool:
        return self.current_step_number == self.total_steps


@dataclass(frozen=True)
class PhaseChanged:
    quest_id: str | None
    old_phase: QuestPhase
    new_phase: QuestPhase


@dataclass(frozen=True)
class ArrivalDetected:
    quest_id: str
    step_number: int
    distance_meters: float


@dataclass(frozen=True)
class StepAdvanced:
    quest_id: str
    completed_step: int
    current_step: int
    total_steps: int


@dataclass(frozen=True)
class QuestCompleted:
    """Emitted once per quest with the reward and resulting rank."""

    quest_id: str
    xp_awarded: int
    old_total_xp: int
    new_total_xp: int
    old_rank: int
    new_rank: int
    leveled_up: bool


QuestEvent = PhaseChanged | ArrivalDetected | StepAdvanced | QuestCompleted
EventCallback = Callable[[QuestEvent], None]


class QuestProgressionController:
    """
    Owns the quest state machine for one user session.

    All methods must be called from the same event loop. Each transition
    checks its phase before its first await and re-checks its generation
    after every await, so no transition is applied against stale state.
    """

    def __init__(
        self,
        backend: QuestBackend,
        route_provider: RouteProvider,
        location_provider: LocationProvider,
        submitter: StepSubmitter | None = None,
        *,
        total_xp: int = 0,
        arrival_threshold_meters: float | None = None,
        poll_interval_seconds: float | None = None,
        fix_timeout_seconds: float | None = None,
        rpc_timeout_seconds: float | None = None,
        route_mode: str | None = None,
        sync_location: bool = True,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Initialize the controller.

        Args:
            backend: Quest backend RPC client
            route_provider: Routing service for navigation legs
            location_provider: Device location source
            submitter: Submission collaborator (built from ``backend`` if None)
            total_xp: User's XP total before this session
            arrival_threshold_meters: Geofence radius (settings default: 50)
            poll_interval_seconds: Location polling interval (settings default: 5)
            fix_timeout_seconds: Bound on a single location fix
            rpc_timeout_seconds: Bound on each route/backend call
            route_mode: Routing profile passed to the route provider
            sync_location: Report polled locations to the backend
            clock: Returns the current aware datetime (for scheduled starts)
        """
        settings = get_settings()

        self.backend = backend
        self.route_provider = route_provider
        self.location_provider = location_provider
        self.submitter = submitter or StepSubmitter(backend)
        self.detector = ArrivalDetector(
            arrival_threshold_meters
            if arrival_threshold_meters is not None
            else settings.arrival_threshold_meters
        )
        self.fix_timeout_seconds = (
            fix_timeout_seconds
            if fix_timeout_seconds is not None
            else settings.location_fix_timeout_seconds
        )
        self.monitor = LocationMonitor(
            location_provider,
            interval_seconds=poll_interval_seconds or settings.location_poll_interval_seconds,
            fix_timeout_seconds=self.fix_timeout_seconds,
            on_preempted=self._leg_preempted,
        )
        self.rpc_timeout_seconds = rpc_timeout_seconds or settings.rpc_timeout_seconds
        self.route_mode = route_mode or settings.route_profile
        self.sync_location = sync_location
        self._clock = clock or (lambda: datetime.now(UTC))

        self._total_xp = total_xp
        self._quest: Quest | None = None
        self._state: UserQuestState | None = None
        self._generation = 0
        self._start_timer: asyncio.Task[None] | None = None
        self._sync_tasks: set[asyncio.Task[None]] = set()
        self._subscribers: list[EventCallback] = []

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> UserQuestState | None:
        """Current immutable state, or None when no quest is joined."""
        return self._state

    @property
    def phase(self) -> QuestPhase:
        return self._state.phase if self._state else QuestPhase.IDLE

    @property
    def quest(self) -> Quest | None:
        return self._quest

    @property
    def current_step(self) -> QuestStep | None:
        if self._quest is None or self._state is None:
            return None
        return self._quest.get_step(self._state.current_step_number)

    @property
    def total_xp(self) -> int:
        return self._total_xp

    @property
    def profile(self) -> RankProfile:
        """Rank profile derived from the current XP total."""
        return RankProfile(total_xp=self._total_xp)

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        """
        Register an observer for quest events.

        Returns:
            A callable that removes the observer
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def join(self, quest: Quest) -> UserQuestState | None:
        """
        Join a quest.

        Enters WAITING if the quest starts in the future, otherwise ACTIVE.

        Returns:
            The new state, or None if the join was superseded while in flight

        Raises:
            InvalidTransitionError: If another quest is in progress
            BackendError: If the backend refuses or fails
        """
        if self.phase not in JOINABLE_PHASES:
            raise InvalidTransitionError(f"Cannot join a quest while {self.phase.value}")

        generation = self._bump_generation()

        if not quest.steps:
            quest = await self._call_backend(
                self.backend.get_quest_detail(quest.id), "get_quest_detail"
            )
            if not quest.steps:
                raise BackendError(f"Quest {quest.id} has no steps", rpc="get_quest_detail")

        start = await self._call_backend(self.backend.start_quest(quest.id), "start_quest")

        if generation != self._generation or self.phase not in JOINABLE_PHASES:
            logger.info("stale_join_dropped", quest_id=quest.id)
            return None

        self._cancel_start_timer()
        now = self._clock()
        waiting = quest.is_scheduled_after(now)
        old_phase = self.phase

        self._quest = quest
        self._state = UserQuestState(
            quest_id=quest.id,
            current_step_number=1,
            total_steps=quest.total_steps,
            phase=QuestPhase.WAITING if waiting else QuestPhase.ACTIVE,
        )

        logger.info(
            "quest_joined",
            quest_id=quest.id,
            quest_title=quest.title,
            total_steps=quest.total_steps,
            backend_status=start.status,
            waiting=waiting,
        )
        self._emit(PhaseChanged(quest.id, old_phase, self._state.phase))

        if waiting and quest.start_time is not None:
            delay = (quest.start_time - now).total_seconds()
            self._start_timer = asyncio.create_task(self._activate_after(delay))
            logger.info("quest_start_scheduled", quest_id=quest.id, seconds_until_start=delay)

        return self._state

    async def navigate(self) -> Route | None:
        """
        Start a route leg to the current step.

        Returns:
            The route, or None if this leg was superseded while the route was
            being fetched

        Raises:
            InvalidTransitionError: If not ACTIVE
            MissingLocationError: If the device location or step target is unknown
            RouteUnavailableError: If no route could be computed
        """
        self._require(QuestPhase.ACTIVE)
        step = self.current_step
        if step is None or step.location is None:
            raise MissingLocationError("Current step has no target location")

        generation = self._bump_generation()
        origin = await self._locate()

        if generation != self._generation or self.phase is not QuestPhase.ACTIVE:
            logger.info("stale_leg_dropped", reason="superseded_before_route")
            return None
        if origin is None:
            raise MissingLocationError("Current device location is unknown")

        route: Route | None
        try:
            route = await asyncio.wait_for(
                self.route_provider.get_route(origin, step.location, self.route_mode),
                timeout=self.rpc_timeout_seconds,
            )
        except TimeoutError:
            logger.warning("route_request_timed_out", step_number=step.step_number)
            route = None
        except Exception as e:
            if generation == self._generation:
                raise RouteUnavailableError(f"Route provider failed: {e}") from e
            route = None

        if generation != self._generation or self.phase is not QuestPhase.ACTIVE:
            logger.info("stale_route_dropped", step_number=step.step_number)
            return None
        if route is None:
            self._update(last_known_location=origin)
            raise RouteUnavailableError("No route available to the current step")

        self._transition(QuestPhase.NAVIGATING, active_route=route, last_known_location=origin)
        self.monitor.start(self._sample_handler(generation))

        logger.info(
            "navigation_started",
            quest_id=self._state.quest_id if self._state else None,
            step_number=step.step_number,
            distance_meters=route.distance_meters,
            duration_seconds=route.duration_seconds,
        )
        return route

    async def complete_task(
        self, submission: Submission | None = None, step_number: int | None = None
    ) -> UserQuestState | None:
        """
        Submit the current step.

        Args:
            submission: Photo/text proof (required fields depend on the step)
            step_number: Step being completed; defaults to the current step

        Returns:
            The new state, or None if the result arrived after cancellation

        Raises:
            DuplicateSubmissionError: If a submission is already in flight
            StepSequenceError: If ``step_number`` is not the next step
            InvalidTransitionError: If the user has not arrived
            SubmissionError: If the submission misses a requirement
            BackendError: If the backend fails (phase returns to ARRIVED)
        """
        if self._state is None:
            raise InvalidTransitionError("No quest joined")
        if self._state.phase is QuestPhase.SUBMITTING:
            raise DuplicateSubmissionError("A submission for this step is already in flight")

        state = self._state
        attempted = step_number if step_number is not None else state.current_step_number
        if not validate_step_sequence(state.current_step_number - 1, attempted):
            logger.warning(
                "step_out_of_sequence",
                quest_id=state.quest_id,
                expected_step=state.current_step_number,
                attempted_step=attempted,
            )
            raise StepSequenceError(state.current_step_number, attempted)

        self._require(QuestPhase.ARRIVED)
        step = self.current_step
        quest = self._quest
        assert step is not None and quest is not None

        submission = submission or Submission()
        self.submitter.validate(step, submission)

        generation = self._bump_generation()
        self._transition(QuestPhase.SUBMITTING)

        error: BackendError | None = None
        response: CompleteStepResponse | None = None
        try:
            response = await asyncio.wait_for(
                self.submitter.submit(quest, step, submission, state.last_known_location),
                timeout=self.rpc_timeout_seconds,
            )
        except TimeoutError:
            error = BackendError("Step submission timed out", rpc="complete_step")
        except BackendError as e:
            error = e
        except Exception:
            if generation == self._generation:
                self._transition(QuestPhase.ARRIVED)
            raise

        if generation != self._generation:
            logger.info("stale_step_result_dropped", step_number=step.step_number)
            return None

        if error is not None or response is None:
            self._transition(QuestPhase.ARRIVED)
            raise error or BackendError("Step submission failed", rpc="complete_step")

        return await self._step_accepted(response, generation)

    def end_route(self) -> UserQuestState:
        """Cancel the current leg and return to ACTIVE."""
        self._require(QuestPhase.NAVIGATING, QuestPhase.ARRIVED)
        self._bump_generation()
        self.monitor.stop()
        self._transition(QuestPhase.ACTIVE)
        logger.info("route_ended", quest_id=self._state.quest_id if self._state else None)
        return self._require_state()

    def abandon_quest(self) -> UserQuestState:
        """Leave the quest entirely."""
        self._require(*ABANDONABLE_PHASES)
        self._bump_generation()
        self._cancel_start_timer()
        self.monitor.stop()
        self._transition(QuestPhase.ENDED)
        logger.info("quest_abandoned", quest_id=self._state.quest_id if self._state else None)
        return self._require_state()

    def suspend(self) -> None:
        """
        Handle the app going to the background.

        Polling stops, in-flight results are invalidated, an active leg falls
        back to ACTIVE and an in-flight submission falls back to ARRIVED.
        """
        self._bump_generation()
        self.monitor.stop()

        if self.phase is QuestPhase.NAVIGATING:
            self._transition(QuestPhase.ACTIVE)
        elif self.phase is QuestPhase.SUBMITTING:
            self._transition(QuestPhase.ARRIVED)

        logger.info("session_suspended", phase=self.phase.value)

    def logout(self) -> None:
        """Drop all quest state and return to IDLE."""
        self._bump_generation()
        self._cancel_start_timer()
        self.monitor.stop()
        for task in list(self._sync_tasks):
            task.cancel()

        old_phase = self.phase
        quest_id = self._state.quest_id if self._state else None
        self._state = None
        self._quest = None

        if old_phase is not QuestPhase.IDLE:
            self._emit(PhaseChanged(quest_id, old_phase, QuestPhase.IDLE))
        logger.info("session_logged_out", quest_id=quest_id)

    async def close(self) -> None:
        """Log out and wait for background tasks to finish unwinding."""
        pending = [t for t in self._sync_tasks if not t.done()]
        timer = self._start_timer
        self.logout()
        await self.monitor.wait_stopped()
        if timer is not None:
            pending.append(timer)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _step_accepted(
        self, response: CompleteStepResponse, generation: int
    ) -> UserQuestState | None:
        state = self._require_state()
        completed = state.current_step_number

        if response.total_steps is not None and response.total_steps != state.total_steps:
            logger.warning(
                "backend_total_steps_mismatch",
                quest_id=state.quest_id,
                local_total=state.total_steps,
                backend_total=response.total_steps,
            )

        if not (state.is_last_step or response.quest_completed):
            next_step = self._resolve_next_step(completed, response.current_step)
            self.monitor.stop()
            self._transition(QuestPhase.ACTIVE, current_step_number=next_step)
            self._emit(StepAdvanced(state.quest_id, completed, next_step, state.total_steps))
            logger.info(
                "step_completed",
                quest_id=state.quest_id,
                completed_step=completed,
                current_step=next_step,
                total_steps=state.total_steps,
            )
            return self._state

        xp_reward = await self._collect_reward()
        if generation != self._generation:
            logger.info("stale_quest_completion_dropped", quest_id=state.quest_id)
            return None

        before = self.profile
        after = before.award(xp_reward)
        leveled_up = check_level_up(before.rank, after.total_xp)
        self._total_xp = after.total_xp

        self.monitor.stop()
        self._transition(QuestPhase.COMPLETED)
        self._emit(
            QuestCompleted(
                quest_id=state.quest_id,
                xp_awarded=xp_reward,
                old_total_xp=before.total_xp,
                new_total_xp=after.total_xp,
                old_rank=before.rank,
                new_rank=after.rank,
                leveled_up=leveled_up,
            )
        )
        logger.info(
            "quest_completed",
            quest_id=state.quest_id,
            xp_awarded=xp_reward,
            total_xp=after.total_xp,
            rank=after.rank,
            rank_name=after.rank_name,
            leveled_up=leveled_up,
        )
        return self._state

    def _resolve_next_step(self, completed: int, backend_step: int | None) -> int:
        """Prefer the backend's step number; fall back to local +1 if absent or out of order."""
        local = completed + 1
        if backend_step is None:
            return local
        if validate_step_sequence(completed, backend_step):
            return backend_step
        logger.warning(
            "backend_step_out_of_sequence",
            completed_step=completed,
            backend_step=backend_step,
            using_step=local,
        )
        return local

    async def _collect_reward(self) -> int:
        quest = self._quest
        assert quest is not None
        try:
            response = await asyncio.wait_for(
                self.backend.complete_quest(quest.id), timeout=self.rpc_timeout_seconds
            )
        except (BackendError, TimeoutError) as e:
            logger.warning("complete_quest_failed", quest_id=quest.id, error=str(e))
            return quest.reward_xp

        if response.xp_reward is None:
            return quest.reward_xp
        return response.xp_reward

    def _sample_handler(self, generation: int) -> Callable[[Location], Awaitable[None]]:
        async def on_sample(location: Location) -> None:
            self._handle_sample(location, generation)

        return on_sample

    def _handle_sample(self, location: Location, generation: int) -> None:
        if generation != self._generation or self.phase is not QuestPhase.NAVIGATING:
            return

        step = self.current_step
        if step is None or step.location is None:
            return

        self._update(last_known_location=location)
        self._schedule_location_sync(location)

        distance = self.detector.distance_to(location, step.location)
        logger.debug("location_sample", step_number=step.step_number, distance_meters=distance)

        if self.detector.check(location, step.location):
            self._transition(QuestPhase.ARRIVED)
            self._emit(ArrivalDetected(self._require_state().quest_id, step.step_number, distance))
            logger.info(
                "arrival_detected",
                step_number=step.step_number,
                distance_meters=round(distance, 1),
            )

    def _leg_preempted(self) -> None:
        """Another monitor took over polling; the leg falls back to ACTIVE."""
        if self.phase is not QuestPhase.NAVIGATING:
            return
        self._bump_generation()
        self._transition(QuestPhase.ACTIVE)
        logger.warning(
            "route_preempted", quest_id=self._state.quest_id if self._state else None
        )

    def _schedule_location_sync(self, location: Location) -> None:
        if not self.sync_location:
            return
        task = asyncio.create_task(self._sync_location(location))
        self._sync_tasks.add(task)
        task.add_done_callback(self._sync_tasks.discard)

    async def _sync_location(self, location: Location) -> None:
        try:
            await asyncio.wait_for(
                self.backend.update_user_location(location), timeout=self.rpc_timeout_seconds
            )
        except (BackendError, TimeoutError) as e:
            logger.warning("location_sync_failed", error=str(e))

    async def _locate(self) -> Location | None:
        """Fresh device fix, falling back to the last known location."""
        try:
            raw = await asyncio.wait_for(
                self.location_provider.get_current_location(), timeout=self.fix_timeout_seconds
            )
        except (LocationUnavailableError, TimeoutError) as e:
            logger.info("location_fix_unavailable", error=str(e))
            return self._state.last_known_location if self._state else None
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("location_fix_failed", error=str(e), exc_info=True)
            return self._state.last_known_location if self._state else None

        result = validate_fix(raw)
        if not result.ok:
            logger.warning("location_fix_invalid", error=result.error)
            return self._state.last_known_location if self._state else None
        return result.location

    async def _activate_after(self, delay: float) -> None:
        if delay > 0:
            await asyncio.sleep(delay)
        if self.phase is QuestPhase.WAITING:
            self._start_timer = None
            self._transition(QuestPhase.ACTIVE)
            logger.info("quest_started", quest_id=self._require_state().quest_id)

    async def _call_backend(self, awaitable: Awaitable[T], rpc: str) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.rpc_timeout_seconds)
        except TimeoutError as e:
            raise BackendError(f"{rpc} timed out", rpc=rpc) from e

    def _cancel_start_timer(self) -> None:
        if self._start_timer is not None and self._start_timer is not asyncio.current_task():
            self._start_timer.cancel()
        self._start_timer = None

    def _bump_generation(self) -> int:
        self._generation += 1
        return self._generation

    def _require_state(self) -> UserQuestState:
        if self._state is None:
            raise InvalidTransitionError("No quest joined")
        return self._state

    def _require(self, *phases: QuestPhase) -> UserQuestState:
        state = self._require_state()
        if state.phase not in phases:
            allowed = ", ".join(p.value for p in phases)
            raise InvalidTransitionError(
                f"Cannot do that while {state.phase.value} (allowed: {allowed})"
            )
        return state

    def _update(self, **changes: Any) -> None:
        """Replace fields without a phase change."""
        self._state = replace(self._require_state(), **changes)

    def _transition(self, phase: QuestPhase, **changes: Any) -> None:
        old = self._require_state()
        if phase is not QuestPhase.NAVIGATING:
            changes["active_route"] = None
        if old.phase is QuestPhase.NAVIGATING and phase is not QuestPhase.NAVIGATING:
            self.monitor.stop()

        self._state = replace(old, phase=phase, **changes)
        logger.info(
            "phase_changed",
            quest_id=old.quest_id,
            old_phase=old.phase.value,
            new_phase=phase.value,
            step_number=self._state.current_step_number,
        )
        if old.phase is not phase:
            self._emit(PhaseChanged(old.quest_id, old.phase, phase))

    def _emit(self, event: QuestEvent) -> None:
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                logger.error(
                    "event_subscriber_error",
                    event_type=type(event).__name__,
                    error=str(e),
                    exc_info=True,
                )
