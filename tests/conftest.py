"""
Shared test fixtures for storygen tests.

Provides:
- In-memory fakes for the text, image, video and muxing collaborators
- A temporary SQLite cache database and ArtifactStore
- A FileManager rooted in tmp_path
- An orchestrator factory wired to the fakes with no-op sleeps
"""

import asyncio
import base64
import json
import re
import subprocess
from pathlib import Path
from typing import Optional

import httpx
import pytest
import pytest_asyncio

from storygen.db import build_engine, build_session_factory, init_database
from storygen.orchestrator import PipelineOrchestrator
from storygen.pipeline.keyframes import SceneRenderer
from storygen.pipeline.stitcher import ClipAssembler
from storygen.pipeline.storyboard import ScenePlanner
from storygen.pipeline.video_gen import TransitionRenderer
from storygen.schemas.storyboard import ImagePayload, PollResult
from storygen.services.artifact_store import ArtifactStore
from storygen.services.collaborators.base import (
    ImageGenerator,
    ImageResolver,
    Muxer,
    TextGenerator,
    VideoGenerator,
)
from storygen.services.file_manager import FileManager
from storygen.services.single_flight import SingleFlightGuard

DESCRIPTOR = {"subject_id": 3, "chapter_id": 7, "topic_id": 42, "level": 9}
LABELS = {"chapter": "Light", "topic": "Refraction", "subject": "Physics"}
FINGERPRINT = "0a531d70e5add31bd18ac99da002996c"  # md5("7-42-3-9")


def storyboard_json(scene_count: int = 3, durations: Optional[list] = None) -> str:
    """A well-formed storyboard response with scene_count shots."""
    shots = []
    for i in range(1, scene_count + 1):
        shot = {
            "shot": i,
            "prompt": f"Shot {i} visual description",
            "duration": durations[i - 1] if durations else 6,
            "description": f"Summary {i}",
            "shotStory": f"Story {i}",
        }
        if i == 1:
            shot["heroSubject"] = "A friendly robot teacher with a blue scarf"
        shots.append(shot)
    return json.dumps(shots)


# =============================================================================
# Collaborator fakes
# =============================================================================


class FakeTextGenerator(TextGenerator):
    """Returns queued responses in order (exceptions are raised); repeats the last."""

    def __init__(self, responses: Optional[list] = None, scene_count: int = 3):
        self.responses = list(responses) if responses else [storyboard_json(scene_count)]
        self.calls: list[str] = []

    async def generate_text(self, prompt: str) -> str:
        self.calls.append(prompt)
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, BaseException):
            raise item
        return item


class FakeImageGenerator(ImageGenerator):
    """Produces image-<n> payloads; call numbers in `empty` / `failing` degrade."""

    def __init__(self, empty: tuple = (), failing: tuple = ()):
        self.empty = set(empty)
        self.failing = set(failing)
        self.calls: list[tuple[str, Optional[ImagePayload]]] = []

    async def generate_image(self, prompt, reference=None):
        self.calls.append((prompt, reference))
        n = len(self.calls)
        if n in self.failing:
            raise RuntimeError(f"image model unavailable for call {n}")
        if n in self.empty:
            return None
        return ImagePayload(data=f"image-{n}".encode(), mime_type="image/png")


def generated_samples(encoded: str) -> dict:
    return {"generateVideoResponse": {"generatedSamples": [{"video": {"bytesBase64Encoded": encoded}}]}}


class FakeVideoGenerator(VideoGenerator):
    """Long-running job fake.

    Each job reports done on its `polls_until_done`-th poll, with a payload
    shaped by `shape`. `never_done` keeps every job running; `error` makes
    every poll report an explicit failure; `poll_errors` are raised (in
    order) before any poll result. When `gate` is set, polls wait on it.
    """

    def __init__(
        self,
        polls_until_done: int = 1,
        shape=generated_samples,
        never_done: bool = False,
        error=None,
        poll_errors: Optional[list] = None,
        gate: Optional[asyncio.Event] = None,
    ):
        self.polls_until_done = polls_until_done
        self.shape = shape
        self.never_done = never_done
        self.error = error
        self.poll_errors = list(poll_errors or [])
        self.gate = gate
        self.submitted = asyncio.Event()
        self.submissions: list[dict] = []
        self.poll_counts: dict[str, int] = {}
        self.closed = False

    async def submit(self, prompt, first_frame, last_frame, duration_seconds):
        handle = f"operations/op-{len(self.submissions) + 1}"
        self.submissions.append({
            "handle": handle,
            "prompt": prompt,
            "first_frame": first_frame,
            "last_frame": last_frame,
            "duration_seconds": duration_seconds,
        })
        self.submitted.set()
        return handle

    async def poll(self, operation_handle):
        if self.gate is not None:
            await self.gate.wait()
        count = self.poll_counts.get(operation_handle, 0) + 1
        self.poll_counts[operation_handle] = count
        if self.poll_errors:
            raise self.poll_errors.pop(0)
        if self.error is not None:
            return PollResult(done=True, error=self.error)
        if self.never_done or count < self.polls_until_done:
            return PollResult(done=False)
        job_number = operation_handle.rsplit("-", 1)[1]
        encoded = base64.b64encode(f"clip-{job_number}".encode()).decode()
        return PollResult(done=True, response=self.shape(encoded))

    async def aclose(self):
        self.closed = True


class FakeMuxer(Muxer):
    """Concatenates the listed files' bytes; records each manifest it saw."""

    def __init__(self, fail_with: Optional[BaseException] = None):
        self.fail_with = fail_with
        self.manifests: list[list[Path]] = []

    async def concat(self, manifest_path, output_path):
        lines = Path(manifest_path).read_text().splitlines()
        clip_paths = [
            Path(re.match(r"file '(.*)'", line).group(1).replace("'\\''", "'"))
            for line in lines
        ]
        self.manifests.append(clip_paths)
        if self.fail_with is not None:
            raise self.fail_with
        Path(output_path).write_bytes(b"".join(p.read_bytes() for p in clip_paths))


def ffmpeg_failure(stderr: bytes = b"concat: invalid data found") -> subprocess.CalledProcessError:
    return subprocess.CalledProcessError(1, ["ffmpeg"], output=b"", stderr=stderr)


PLACEHOLDER_PNG = b"placeholder-png"


def offline_resolver() -> ImageResolver:
    """ImageResolver whose URL fetches are served locally."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=PLACEHOLDER_PNG, headers={"content-type": "image/png"})

    return ImageResolver(httpx.AsyncClient(transport=httpx.MockTransport(handler)))


class SleepRecorder:
    """Injected sleep that records requested delays without waiting."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


# =============================================================================
# Storage fixtures
# =============================================================================


@pytest.fixture
def file_manager(tmp_path) -> FileManager:
    return FileManager(tmp_path / "data", "http://test.local")


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'cache.db'}"


@pytest_asyncio.fixture
async def session_factory(database_url):
    engine = build_engine(database_url)
    await init_database(engine)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest_asyncio.fixture
async def store(session_factory) -> ArtifactStore:
    return ArtifactStore(session_factory)


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


# =============================================================================
# Orchestrator factory
# =============================================================================


@pytest.fixture
def make_orchestrator(file_manager, sleep):
    """Build an orchestrator over the fakes. Unspecified collaborators get defaults."""

    def _make(
        store: ArtifactStore,
        *,
        text: Optional[FakeTextGenerator] = None,
        image: Optional[FakeImageGenerator] = None,
        video: Optional[FakeVideoGenerator] = None,
        muxer: Optional[FakeMuxer] = None,
        guard: Optional[SingleFlightGuard] = None,
        scene_count: int = 3,
        max_polls: int = 5,
        keep_work_files: bool = False,
    ) -> PipelineOrchestrator:
        return PipelineOrchestrator(
            store=store,
            guard=guard or SingleFlightGuard(),
            planner=ScenePlanner(
                text or FakeTextGenerator(scene_count=scene_count),
                max_attempts=2,
                retry_delay=0.4,
                style="Test style",
                sleep=sleep,
            ),
            scene_renderer=SceneRenderer(
                image or FakeImageGenerator(), style="Test style", delay=0.0, sleep=sleep,
            ),
            transition_renderer=TransitionRenderer(
                video or FakeVideoGenerator(),
                file_manager,
                image_resolver=offline_resolver(),
                poll_interval=10.0,
                max_polls=max_polls,
                sleep=sleep,
            ),
            assembler=ClipAssembler(muxer or FakeMuxer(), file_manager),
            file_manager=file_manager,
            scene_count=scene_count,
            keep_work_files=keep_work_files,
        )

    return _make
