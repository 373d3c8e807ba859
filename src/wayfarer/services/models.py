"""
Typed payloads exchanged with the quest backend and the route provider.

Backend payloads arrive with a mix of snake_case and camelCase keys, so each
field lists the spellings it accepts. Everything is validated here, at the
collaborator boundary, before the quest core sees it.
"""

from datetime import UTC, datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from wayfarer.core.geo import Location, format_distance, format_duration, validate_location


def _aliases(*names: str) -> AliasChoices:
    return AliasChoices(*names)


def _check_location(value: Location | None) -> Location | None:
    if value is None:
        return None
    result = validate_location(value.latitude, value.longitude)
    if not result.ok:
        raise ValueError(result.error)
    return result.location


class QuestStep(BaseModel):
    """
    One waypoint of a quest.

    Attributes:
        id: Backend step identifier (may be absent in older payloads)
        step_number: 1-based position in the quest
        title: Short display title
        description: Task text shown on arrival
        location: Target waypoint; None if the backend did not send one
        requires_photo: A photo must be submitted
        requires_text: A text answer must be submitted
    """

    model_config = ConfigDict(frozen=True, extra="ignore", coerce_numbers_to_str=True)

    id: str | None = Field(default=None, validation_alias=_aliases("id", "step_id", "stepId"))
    step_number: int = Field(
        ..., ge=1, validation_alias=_aliases("step_number", "stepNumber", "order")
    )
    title: str = ""
    description: str = ""
    location: Location | None = Field(
        default=None, validation_alias=_aliases("location", "coordinates")
    )
    requires_photo: bool = Field(
        default=False, validation_alias=_aliases("requires_photo", "requiresPhoto")
    )
    requires_text: bool = Field(
        default=False, validation_alias=_aliases("requires_text", "requiresText")
    )

    @field_validator("location")
    @classmethod
    def _validate_location(cls, value: Location | None) -> Location | None:
        return _check_location(value)


class Quest(BaseModel):
    """
    A quest as fetched from the backend. Immutable once built.

    Steps are sorted by ``step_number`` and must run 1..N without gaps.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", coerce_numbers_to_str=True)

    id: str = Field(..., validation_alias=_aliases("id", "quest_id", "questId"))
    title: str = ""
    description: str = ""
    reward_xp: int = Field(
        default=25, validation_alias=_aliases("reward_xp", "xp_reward", "xpReward", "rewardXp")
    )
    estimated_duration_minutes: int | None = Field(
        default=None,
        validation_alias=_aliases(
            "estimated_duration_minutes", "estimatedDuration", "estimated_duration"
        ),
    )
    start_time: datetime | None = Field(
        default=None, validation_alias=_aliases("start_time", "startTime")
    )
    steps: tuple[QuestStep, ...] = ()

    @field_validator("start_time")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    @field_validator("steps")
    @classmethod
    def _sort_and_check_steps(cls, value: tuple[QuestStep, ...]) -> tuple[QuestStep, ...]:
        ordered = tuple(sorted(value, key=lambda step: step.step_number))
        for expected, step in enumerate(ordered, start=1):
            if step.step_number != expected:
                raise ValueError(
                    f"Quest steps must be numbered 1..{len(ordered)} without gaps; "
                    f"found step {step.step_number} at position {expected}"
                )
        return ordered

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    def get_step(self, step_number: int) -> QuestStep | None:
        """Get a step by its 1-based number."""
        if 1 <= step_number <= len(self.steps):
            return self.steps[step_number - 1]
        return None

    def step_key(self, step: QuestStep) -> str:
        """Identifier sent to the backend for ``step``."""
        return step.id or f"step-{self.id}-{step.step_number - 1}"

    def is_scheduled_after(self, now: datetime) -> bool:
        """Check if the quest has a start time later than ``now``."""
        return self.start_time is not None and self.start_time > now


class RouteInstruction(BaseModel):
    """A single turn instruction along a route."""

    model_config = ConfigDict(frozen=True)

    instruction: str
    distance_meters: float = 0.0
    duration_seconds: float = 0.0
    maneuver_type: str = ""


class Route(BaseModel):
    """A routable path between the user and the current step."""

    model_config = ConfigDict(frozen=True)

    distance_meters: float = Field(..., ge=0)
    duration_seconds: float = Field(..., ge=0)
    polyline: tuple[tuple[float, float], ...] = ()
    steps: tuple[RouteInstruction, ...] = ()

    def summary(self) -> str:
        """Short line for the navigation card, e.g. "1.2 km · 15 min walk"."""
        distance = format_distance(self.distance_meters)
        return f"{distance} · {format_duration(self.duration_seconds)}"


class RpcResponse(BaseModel):
    """Common envelope: every RPC reports ``success`` and, on failure, ``error``."""

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    success: bool
    error: str | None = None


class AvailableQuestsResponse(RpcResponse):
    quests: list[Quest] = Field(default_factory=list)
    count: int | None = None


class UserQuestRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: str = "active"


class StartQuestResponse(RpcResponse):
    user_quest: UserQuestRecord | None = Field(
        default=None, validation_alias=_aliases("user_quest", "userQuest")
    )

    @property
    def status(self) -> str | None:
        return self.user_quest.status if self.user_quest else None


class QuestDetailResponse(RpcResponse):
    quest: Quest


class CompleteStepResponse(RpcResponse):
    """
    Result of completing a step.

    ``current_step`` is the 1-based step the user is on after the completion;
    the backend sometimes omits it.
    """

    quest_completed: bool = Field(
        default=False, validation_alias=_aliases("quest_completed", "questCompleted")
    )
    current_step: int | None = Field(
        default=None, validation_alias=_aliases("current_step", "currentStep")
    )
    total_steps: int | None = Field(
        default=None, validation_alias=_aliases("total_steps", "totalSteps")
    )


class CompleteQuestResponse(RpcResponse):
    xp_reward: int | None = Field(
        default=None, validation_alias=_aliases("xp_reward", "xpReward", "xp_earned", "xpEarned")
    )


class SubmitMediaResponse(RpcResponse):
    media_id: str | None = Field(default=None, validation_alias=_aliases("media_id", "mediaId"))


class AckResponse(RpcResponse):
    pass


class AuthSession(BaseModel):
    """Session returned by email authentication."""

    model_config = ConfigDict(extra="ignore")

    token: str
    refresh_token: str | None = None
    user_id: str = ""
    username: str = ""
    created: bool = False


def location_payload(location: Location) -> dict[str, Any]:
    """Wire representation of a location."""
    return {"latitude": location.latitude, "longitude": location.longitude}
