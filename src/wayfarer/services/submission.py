"""Proof-of-visit submission for quest steps."""

from dataclasses import dataclass

import structlog

from wayfarer.core.errors import SubmissionError
from wayfarer.core.geo import Location
from wayfarer.services.backend import QuestBackend
from wayfarer.services.models import CompleteStepResponse, Quest, QuestStep

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Submission:
    """What the user hands in at a waypoint."""

    photo_ref: str | None = None
    text: str | None = None

    def missing_for(self, step: QuestStep) -> list[str]:
        """List the requirements of ``step`` this submission does not meet."""
        missing = []
        if step.requires_photo and not self.photo_ref:
            missing.append("photo")
        if step.requires_text and not (self.text and self.text.strip()):
            missing.append("text")
        return missing


class StepSubmitter:
    """
    Forwards a step submission to the backend.

    Media (photo and/or text) is attached first, then the step is completed.
    The returned response is what the controller treats as "step accepted".
    """

    def __init__(self, backend: QuestBackend) -> None:
        self.backend = backend

    def validate(self, step: QuestStep, submission: Submission) -> None:
        """
        Check a submission against the step's requirements.

        Raises:
            SubmissionError: If a required photo or text is missing
        """
        missing = submission.missing_for(step)
        if missing:
            raise SubmissionError(
                f"Step {step.step_number} requires: {', '.join(missing)}"
            )

    async def submit(
        self,
        quest: Quest,
        step: QuestStep,
        submission: Submission,
        location: Location | None,
    ) -> CompleteStepResponse:
        """
        Send the submission and complete the step.

        Raises:
            SubmissionError: If the submission misses a requirement
            BackendError: If any RPC fails
        """
        self.validate(step, submission)
        step_id = quest.step_key(step)

        if submission.photo_ref or submission.text:
            media_type = "photo" if submission.photo_ref else "text"
            media = await self.backend.submit_step_media(
                quest.id, step_id, media_type, submission.photo_ref, submission.text
            )
            logger.info(
                "step_media_submitted",
                quest_id=quest.id,
                step_number=step.step_number,
                media_type=media_type,
                media_id=media.media_id,
            )

        response = await self.backend.complete_step(quest.id, step_id, location)
        logger.info(
            "step_submitted",
            quest_id=quest.id,
            step_number=step.step_number,
            quest_completed=response.quest_completed,
            current_step=response.current_step,
        )
        return response
