"""Scene planning: descriptor + labels -> ordered Scene sequence.

Calls the text-generation collaborator once per attempt and validates the
JSON array it returns. Transient collaborator errors are retried a small,
fixed number of times; malformed output fails immediately with
PlanningFailed. There is no fallback storyboard.
"""

import asyncio
import json
import logging
import re
from typing import Awaitable, Callable, Optional

from pydantic import ValidationError as PydanticValidationError
from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
)

from storygen.config import settings
from storygen.errors import PlanningFailed, is_transient
from storygen.prompts import build_storyboard_prompt
from storygen.schemas.descriptor import Descriptor, Labels
from storygen.schemas.storyboard import Scene, StoryboardOutput, normalize_duration
from storygen.services.collaborators.base import TextGenerator

logger = logging.getLogger(__name__)

_CODE_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)


def parse_storyboard(text: str, scene_count: int) -> list[Scene]:
    """Validate raw model output into exactly scene_count Scenes numbered 1..n.

    Raises:
        PlanningFailed: On non-JSON output, schema mismatch, wrong length or
            non-contiguous shot numbers
    """
    cleaned = _CODE_FENCE.sub("", text or "").strip()
    try:
        storyboard = StoryboardOutput.model_validate_json(cleaned)
    except (PydanticValidationError, json.JSONDecodeError) as e:
        raise PlanningFailed(f"Storyboard response is not a valid shot list: {e}") from e

    shots = sorted(storyboard.root, key=lambda shot: shot.shot)
    if len(shots) != scene_count:
        raise PlanningFailed(
            f"Storyboard has {len(shots)} shots, expected {scene_count}"
        )
    numbers = [shot.shot for shot in shots]
    if numbers != list(range(1, scene_count + 1)):
        raise PlanningFailed(f"Storyboard shot numbers are not 1..{scene_count}: {numbers}")

    return [
        Scene(
            index=shot.shot,
            render_prompt=shot.prompt,
            duration_seconds=normalize_duration(shot.duration),
            summary=shot.description,
            narrative=shot.shot_story,
            hero_subject_description=(shot.hero_subject or None) if shot.shot == 1 else None,
        )
        for shot in shots
    ]


class ScenePlanner:
    """Produce the ordered scene list for one descriptor.

    Args:
        text_generator: Text-generation collaborator
        max_attempts: Total attempts for transient collaborator errors
        retry_delay: Fixed delay between attempts in seconds
        style: Shared visual style text embedded in the prompt
        sleep: Awaitable sleep used between attempts (injectable for tests)
    """

    def __init__(
        self,
        text_generator: TextGenerator,
        *,
        max_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
        style: Optional[str] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        self._text_generator = text_generator
        self._max_attempts = max_attempts or settings.pipeline.planner_max_attempts
        self._retry_delay = (
            settings.pipeline.planner_retry_delay if retry_delay is None else retry_delay
        )
        self._style = style or settings.pipeline.visual_style
        self._sleep = sleep or asyncio.sleep

    async def plan(
        self,
        descriptor: Descriptor,
        labels: Labels,
        scene_count: int,
    ) -> list[Scene]:
        """Return exactly scene_count scenes in index order.

        Raises:
            PlanningFailed: On malformed output, a non-transient collaborator
                error, or when the transient retry budget is exhausted
        """
        prompt = build_storyboard_prompt(labels, descriptor.level, scene_count, self._style)
        logger.info(
            f"Storyboard start: topic={labels.topic!r} chapter={labels.chapter!r} "
            f"subject={labels.subject!r} level={descriptor.level} shots={scene_count}"
        )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_fixed(self._retry_delay),
            retry=retry_if_exception(is_transient),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
        )
        try:
            text = await retrying(self._text_generator.generate_text, prompt)
        except RetryError as e:
            cause = e.last_attempt.exception()
            logger.error(f"Storyboard generation failed after {self._max_attempts} attempts: {cause}")
            raise PlanningFailed(
                f"Storyboard generation failed after {self._max_attempts} attempts: {cause}"
            ) from cause
        except Exception as e:
            logger.error(f"Storyboard generation failed: {e}")
            raise PlanningFailed(f"Storyboard generation failed: {e}") from e

        scenes = parse_storyboard(text, scene_count)
        logger.info(f"Storyboard success: {len(scenes)} shots")
        return scenes
