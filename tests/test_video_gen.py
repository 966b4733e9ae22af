"""Tests for transition clip generation and job polling."""

import asyncio

import httpx
import pytest

from storygen.errors import CollaboratorTimeout, DecodeError, TransitionFailed
from storygen.pipeline.video_gen import TransitionRenderer, decode_clip
from storygen.schemas.storyboard import ImagePayload, JobState, RenderedScene
from storygen.services.file_manager import placeholder_reference, to_data_url
from tests.conftest import PLACEHOLDER_PNG, FakeVideoGenerator, offline_resolver


def _rendered(durations=(6, 6, 6), placeholders=()):
    scenes = []
    for i, duration in enumerate(durations, start=1):
        if i in placeholders:
            reference = placeholder_reference(i)
        else:
            reference = to_data_url(ImagePayload(data=f"image-{i}".encode()))
        scenes.append(RenderedScene(
            index=i,
            render_prompt=f"Shot {i} visual description",
            duration_seconds=duration,
            summary=f"Summary {i}",
            narrative=f"Story {i}",
            image_reference=reference,
            placeholder=i in placeholders,
        ))
    return scenes


@pytest.fixture
def make_renderer(file_manager, sleep):
    def _make(video, max_polls=5):
        return TransitionRenderer(
            video,
            file_manager,
            image_resolver=offline_resolver(),
            poll_interval=10.0,
            max_polls=max_polls,
            sleep=sleep,
        )
    return _make


@pytest.fixture
def run_dir(file_manager):
    return file_manager.create_run_dir("abc123")


@pytest.mark.asyncio
async def test_one_job_per_adjacent_pair(make_renderer, run_dir):
    video = FakeVideoGenerator()

    jobs = await make_renderer(video).render(_rendered(), run_dir)

    assert [job.index for job in jobs] == [1, 2]
    assert all(job.state == JobState.COMPLETED for job in jobs)
    assert [s["first_frame"].data for s in video.submissions] == [b"image-1", b"image-2"]
    assert [s["last_frame"].data for s in video.submissions] == [b"image-2", b"image-3"]
    assert video.submissions[0]["prompt"] == (
        'Educational transition from "Summary 1" to "Summary 2". Shot 2 visual description'
    )


@pytest.mark.asyncio
async def test_clips_written_to_run_dir(make_renderer, run_dir):
    jobs = await make_renderer(FakeVideoGenerator()).render(_rendered(), run_dir)

    for job in jobs:
        clip = run_dir / "clips" / f"clip_{job.index}.mp4"
        assert job.clip_reference == str(clip)
        assert clip.read_bytes() == f"clip-{job.index}".encode()


@pytest.mark.asyncio
async def test_duration_taken_from_later_scene(make_renderer, run_dir):
    video = FakeVideoGenerator()

    jobs = await make_renderer(video).render(_rendered(durations=(4, 8, 4)), run_dir)

    assert [job.duration_seconds for job in jobs] == [8, 4]
    assert [s["duration_seconds"] for s in video.submissions] == [8, 4]


@pytest.mark.asyncio
async def test_sleeps_before_every_poll(make_renderer, run_dir, sleep):
    video = FakeVideoGenerator(polls_until_done=3)

    jobs = await make_renderer(video).render(_rendered(), run_dir)

    assert [job.attempt_count for job in jobs] == [3, 3]
    assert sleep.delays == [10.0] * 6


@pytest.mark.asyncio
async def test_placeholder_frames_are_fetched(make_renderer, run_dir):
    video = FakeVideoGenerator()

    await make_renderer(video).render(_rendered(placeholders=(2,)), run_dir)

    assert video.submissions[0]["last_frame"].data == PLACEHOLDER_PNG
    assert video.submissions[1]["first_frame"].data == PLACEHOLDER_PNG


@pytest.mark.asyncio
async def test_explicit_error_fails_job_and_aborts(make_renderer, run_dir):
    video = FakeVideoGenerator(error={"code": 3, "message": "unsafe content"})

    with pytest.raises(TransitionFailed, match="unsafe content") as exc_info:
        await make_renderer(video).render(_rendered(), run_dir)

    assert exc_info.value.index == 1
    assert exc_info.value.stage == "video_gen"
    assert len(video.submissions) == 1


@pytest.mark.asyncio
async def test_poll_budget_exhausted_times_out(make_renderer, run_dir, sleep):
    video = FakeVideoGenerator(never_done=True)

    with pytest.raises(CollaboratorTimeout) as exc_info:
        await make_renderer(video, max_polls=4).render(_rendered(), run_dir)

    assert exc_info.value.index == 1
    assert exc_info.value.attempts == 4
    assert len(sleep.delays) == 4
    assert len(video.submissions) == 1


@pytest.mark.asyncio
async def test_transient_poll_error_counts_as_attempt(make_renderer, run_dir):
    video = FakeVideoGenerator(poll_errors=[httpx.ConnectError("connection reset")])

    jobs = await make_renderer(video).render(_rendered(durations=(6, 6)), run_dir)

    assert jobs[0].attempt_count == 2
    assert jobs[0].state == JobState.COMPLETED


@pytest.mark.asyncio
async def test_repeated_transient_poll_errors_time_out(make_renderer, run_dir):
    video = FakeVideoGenerator(poll_errors=[httpx.ReadTimeout("slow")] * 3)

    with pytest.raises(CollaboratorTimeout):
        await make_renderer(video, max_polls=3).render(_rendered(), run_dir)


@pytest.mark.asyncio
async def test_non_transient_poll_error_fails(make_renderer, run_dir):
    video = FakeVideoGenerator(poll_errors=[ValueError("bad operation name")])

    with pytest.raises(TransitionFailed) as exc_info:
        await make_renderer(video).render(_rendered(), run_dir)

    assert exc_info.value.index == 1


@pytest.mark.asyncio
async def test_unresolvable_frame_fails_before_submit(make_renderer, run_dir):
    video = FakeVideoGenerator()
    scenes = _rendered()
    scenes[2] = scenes[2].model_copy(update={"image_reference": "ftp://example.invalid/3.png"})

    with pytest.raises(TransitionFailed) as exc_info:
        await make_renderer(video).render(scenes, run_dir)

    assert exc_info.value.index == 2
    assert len(video.submissions) == 1


@pytest.mark.asyncio
async def test_unknown_payload_shape_is_decode_error(make_renderer, run_dir):
    video = FakeVideoGenerator(shape=lambda encoded: {"result": {"uri": "gs://bucket/clip.mp4"}})

    with pytest.raises(DecodeError) as exc_info:
        await make_renderer(video).render(_rendered(), run_dir)

    assert exc_info.value.index == 1


@pytest.mark.parametrize(
    "payload",
    [
        {"generateVideoResponse": {"generatedSamples": [{"video": {"bytesBase64Encoded": "Y2xpcA=="}}]}},
        {"predictions": [{"bytesBase64Encoded": "Y2xpcA=="}]},
        {"video": {"bytesBase64Encoded": "Y2xpcA=="}},
        {"videos": [{"bytesBase64Encoded": "Y2xpcA=="}]},
    ],
)
def test_decode_known_shapes(payload):
    assert decode_clip(payload, 1) == b"clip"


def test_decode_prefers_earlier_strategy():
    payload = {
        "predictions": [{"bytesBase64Encoded": "Zmlyc3Q="}],
        "videos": [{"bytesBase64Encoded": "c2Vjb25k"}],
    }
    assert decode_clip(payload, 1) == b"first"


@pytest.mark.parametrize("payload", [None, {}, {"videos": []}, {"predictions": "oops"}])
def test_decode_rejects_unknown_shapes(payload):
    with pytest.raises(DecodeError):
        decode_clip(payload, 2)


def test_decode_rejects_invalid_base64():
    with pytest.raises(DecodeError):
        decode_clip({"video": {"bytesBase64Encoded": "not base64!"}}, 1)


@pytest.mark.asyncio
async def test_cancelled_render_drains_job(make_renderer, run_dir):
    gate = asyncio.Event()
    video = FakeVideoGenerator(gate=gate)
    renderer = make_renderer(video)

    task = asyncio.create_task(renderer.render(_rendered(), run_dir))
    await asyncio.wait_for(video.submitted.wait(), timeout=5)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert renderer.draining == 1

    gate.set()
    await asyncio.wait_for(renderer.wait_draining(), timeout=5)

    assert renderer.draining == 0
    assert video.poll_counts["operations/op-1"] >= 1
    # Drained results are discarded, not written to the run directory
    assert not (run_dir / "clips" / "clip_1.mp4").exists()
    assert len(video.submissions) == 1
