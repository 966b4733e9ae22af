"""Transition clip generation between consecutive rendered scenes.

For each adjacent pair (i, i+1) one long-running video job is submitted with
scene i's image as the first frame and scene i+1's image as the last frame.
Each job moves through:

    SUBMITTED -> POLLING -> COMPLETED | FAILED | TIMED_OUT

Polling waits a fixed interval before every observation and gives up after
a fixed number of attempts. Any job ending in FAILED or TIMED_OUT aborts the
whole call; a video with missing transitions is not usable output.

Usage:
    renderer = TransitionRenderer(video_generator, file_manager)
    jobs = await renderer.render(rendered_scenes, run_dir)
"""

import asyncio
import base64
import binascii
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Sequence

from storygen.config import settings
from storygen.errors import (
    CollaboratorTimeout,
    DecodeError,
    TransitionFailed,
    is_transient,
)
from storygen.prompts import build_transition_prompt
from storygen.schemas.storyboard import (
    JobState,
    RenderedScene,
    TransitionJob,
    normalize_duration,
)
from storygen.services.collaborators.base import ImageResolver, VideoGenerator
from storygen.services.file_manager import FileManager

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Completion payload decoding
# ---------------------------------------------------------------------------
def _dig(payload: Any, *path: Any) -> Any:
    """Follow dict keys / list indexes; None as soon as the shape diverges."""
    current = payload
    for step in path:
        if isinstance(step, int):
            if not isinstance(current, list) or len(current) <= step:
                return None
        elif not isinstance(current, dict):
            return None
        current = current[step] if isinstance(step, int) else current.get(step)
        if current is None:
            return None
    return current


DecodeStrategy = Callable[[dict], Optional[str]]

# Known result shapes, tried in order. Add new collaborator versions here.
DECODE_STRATEGIES: list[tuple[str, DecodeStrategy]] = [
    ("generated_samples", lambda r: _dig(r, "generateVideoResponse", "generatedSamples", 0, "video", "bytesBase64Encoded")),
    ("predictions", lambda r: _dig(r, "predictions", 0, "bytesBase64Encoded")),
    ("video", lambda r: _dig(r, "video", "bytesBase64Encoded")),
    ("videos", lambda r: _dig(r, "videos", 0, "bytesBase64Encoded")),
]


def decode_clip(
    response: Optional[dict],
    index: int,
    strategies: Sequence[tuple[str, DecodeStrategy]] = DECODE_STRATEGIES,
) -> bytes:
    """Extract clip bytes from a completed job's response payload.

    Raises:
        DecodeError: If no strategy matches or the payload is not valid base64
    """
    payload = response or {}
    for name, strategy in strategies:
        encoded = strategy(payload)
        if not encoded:
            continue
        try:
            data = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecodeError(
                f"Transition {index}: {name} payload is not valid base64", index=index,
            ) from e
        logger.debug(f"Transition {index}: decoded clip via {name} shape")
        return data

    raise DecodeError(
        f"Transition {index}: no video data in response "
        f"(keys: {sorted(payload.keys()) if isinstance(payload, dict) else type(payload).__name__})",
        index=index,
    )


class TransitionRenderer:
    """Render the N-1 transition clips for N rendered scenes.

    Args:
        video_generator: Async video-generation collaborator
        file_manager: Where completed clips are written
        image_resolver: Turns image references into bytes
        poll_interval: Seconds to wait before each poll
        max_polls: Poll attempts before a job times out
        sleep: Awaitable sleep (injectable for tests)
        decode_strategies: Ordered completion payload decoders
    """

    def __init__(
        self,
        video_generator: VideoGenerator,
        file_manager: FileManager,
        *,
        image_resolver: Optional[ImageResolver] = None,
        poll_interval: Optional[float] = None,
        max_polls: Optional[int] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        decode_strategies: Optional[Sequence[tuple[str, DecodeStrategy]]] = None,
    ) -> None:
        self._video_generator = video_generator
        self._file_manager = file_manager
        self._image_resolver = image_resolver or ImageResolver()
        self._poll_interval = (
            settings.pipeline.video_poll_interval if poll_interval is None else poll_interval
        )
        self._max_polls = settings.pipeline.video_poll_max if max_polls is None else max_polls
        self._sleep = sleep or asyncio.sleep
        self._decode_strategies = list(decode_strategies or DECODE_STRATEGIES)
        self._draining: set[asyncio.Task] = set()

    async def render(
        self,
        rendered_scenes: list[RenderedScene],
        run_dir: Path,
    ) -> list[TransitionJob]:
        """Run one job per adjacent scene pair, sequentially, in index order.

        Returns:
            Completed jobs, ascending by index, each with a clip_reference

        Raises:
            TransitionFailed: A job failed, or its frames/submission failed
            CollaboratorTimeout: A job exhausted its poll budget
            DecodeError: A completed job's payload matched no known shape
        """
        ordered = sorted(rendered_scenes, key=lambda scene: scene.index)
        logger.info(f"Video generation start: {max(len(ordered) - 1, 0)} transitions")

        jobs: list[TransitionJob] = []
        for position in range(len(ordered) - 1):
            job = await self._run_job(
                position + 1, ordered[position], ordered[position + 1], run_dir,
            )
            jobs.append(job)

        logger.info(f"Video generation complete: {len(jobs)} clips ready for stitching")
        return jobs

    async def _run_job(
        self,
        index: int,
        scene_a: RenderedScene,
        scene_b: RenderedScene,
        run_dir: Path,
    ) -> TransitionJob:
        job = TransitionJob(
            index=index,
            prompt=build_transition_prompt(scene_a, scene_b),
            duration_seconds=normalize_duration(scene_b.duration_seconds),
        )

        try:
            first_frame = await self._image_resolver.resolve(scene_a.image_reference)
            last_frame = await self._image_resolver.resolve(scene_b.image_reference)
        except Exception as e:
            job.state = JobState.FAILED
            job.error = str(e)
            logger.error(f"Transition {index}: could not load frames: {e}")
            raise TransitionFailed(f"Transition {index}: could not load frames: {e}", index=index) from e

        try:
            job.operation_handle = await self._video_generator.submit(
                job.prompt, first_frame, last_frame, job.duration_seconds,
            )
        except Exception as e:
            job.state = JobState.FAILED
            job.error = str(e)
            logger.error(f"Transition {index}: submission failed: {e}")
            raise TransitionFailed(f"Transition {index}: submission failed: {e}", index=index) from e

        logger.info(f"Transition {index}: job started ({job.operation_handle})")

        try:
            await self._poll_until_done(job, run_dir)
        except asyncio.CancelledError:
            self._detach(job)
            raise
        return job

    async def _poll_until_done(self, job: TransitionJob, run_dir: Optional[Path]) -> None:
        """Drive job to a terminal state.

        With run_dir None the clip is decoded but not saved (drained jobs).
        """
        job.state = JobState.POLLING

        while job.attempt_count < self._max_polls:
            await self._sleep(self._poll_interval)
            job.attempt_count += 1

            try:
                result = await self._video_generator.poll(job.operation_handle)
            except Exception as e:
                if not is_transient(e):
                    job.state = JobState.FAILED
                    job.error = str(e)
                    raise TransitionFailed(
                        f"Transition {job.index}: polling failed: {e}", index=job.index,
                    ) from e
                logger.warning(
                    f"Transition {job.index}: poll attempt {job.attempt_count} failed: {e}"
                )
                continue

            if result.error:
                job.state = JobState.FAILED
                job.error = _error_message(result.error)
                logger.error(f"Transition {job.index}: job failed: {job.error}")
                raise TransitionFailed(
                    f"Transition {job.index}: video generation failed: {job.error}",
                    index=job.index,
                )

            if not result.done:
                continue

            try:
                data = decode_clip(result.response, job.index, self._decode_strategies)
            except DecodeError as e:
                job.state = JobState.FAILED
                job.error = str(e)
                logger.error(str(e))
                raise

            if run_dir is not None:
                clip_path = self._file_manager.save_clip(run_dir, job.index, data)
                job.clip_reference = str(clip_path)
            job.state = JobState.COMPLETED
            logger.info(
                f"Transition {job.index}: clip completed after {job.attempt_count} polls"
            )
            return

        job.state = JobState.TIMED_OUT
        job.error = f"no result after {job.attempt_count} polls"
        logger.error(f"Transition {job.index}: timed out after {job.attempt_count} polls")
        raise CollaboratorTimeout(
            f"Video generation timed out for transition {job.index} "
            f"after {job.attempt_count} attempts",
            index=job.index,
            attempts=job.attempt_count,
        )

    # -----------------------------------------------------------------------
    # Cancellation: keep observing abandoned jobs until they finish
    # -----------------------------------------------------------------------
    def _detach(self, job: TransitionJob) -> None:
        if job.operation_handle is None or job.is_terminal:
            return
        logger.warning(
            f"Transition {job.index}: caller cancelled, draining {job.operation_handle} in background"
        )
        task = asyncio.create_task(self._drain(job))
        self._draining.add(task)
        task.add_done_callback(self._draining.discard)

    async def _drain(self, job: TransitionJob) -> None:
        try:
            await self._poll_until_done(job, run_dir=None)
            logger.info(f"Transition {job.index}: drained job completed, result discarded")
        except (TransitionFailed, CollaboratorTimeout, DecodeError) as e:
            logger.warning(f"Transition {job.index}: drained job ended {job.state.value}: {e}")

    @property
    def draining(self) -> int:
        """Number of abandoned jobs still being observed."""
        return len(self._draining)

    async def wait_draining(self) -> None:
        """Wait for every abandoned job to reach a terminal state."""
        if self._draining:
            await asyncio.gather(*list(self._draining), return_exceptions=True)

    async def aclose(self) -> None:
        """Finish draining, then close the video collaborator."""
        await self.wait_draining()
        await self._video_generator.aclose()


def _error_message(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("message") or error)
    return str(error)
