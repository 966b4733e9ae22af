"""Tests for clip assembly and the ffmpeg muxer."""

import subprocess
from unittest.mock import patch

import pytest

from storygen.errors import AssemblyFailed, MissingClip
from storygen.pipeline.stitcher import ClipAssembler, concat_manifest
from storygen.services.collaborators.ffmpeg import FfmpegMuxer
from storygen.services.file_manager import FileManager
from tests.conftest import FakeMuxer, ffmpeg_failure


@pytest.fixture
def run_dir(file_manager):
    return file_manager.create_run_dir("abc123")


@pytest.fixture
def clips(file_manager, run_dir):
    return [str(file_manager.save_clip(run_dir, i, f"clip-{i}".encode())) for i in (1, 2)]


@pytest.mark.asyncio
async def test_assembles_clips_in_order(file_manager, run_dir, clips):
    muxer = FakeMuxer()
    output = file_manager.new_output_path("abc123")

    result = await ClipAssembler(muxer, file_manager).assemble(clips, run_dir, output)

    assert result == output
    assert output.read_bytes() == b"clip-1clip-2"
    assert [str(p) for p in muxer.manifests[0]] == clips


@pytest.mark.asyncio
async def test_manifest_removed_after_success(file_manager, run_dir, clips):
    output = file_manager.new_output_path("abc123")

    await ClipAssembler(FakeMuxer(), file_manager).assemble(clips, run_dir, output)

    assert not file_manager.manifest_path(run_dir).exists()


@pytest.mark.asyncio
async def test_muxer_failure_carries_stderr(file_manager, run_dir, clips):
    muxer = FakeMuxer(fail_with=ffmpeg_failure(b"clip_2.mp4: Invalid data found"))
    output = file_manager.new_output_path("abc123")

    with pytest.raises(AssemblyFailed) as exc_info:
        await ClipAssembler(muxer, file_manager).assemble(clips, run_dir, output)

    assert "Invalid data found" in exc_info.value.detail
    assert exc_info.value.stage == "stitching"
    assert not file_manager.manifest_path(run_dir).exists()


@pytest.mark.asyncio
async def test_unexpected_muxer_error_is_assembly_failure(file_manager, run_dir, clips):
    muxer = FakeMuxer(fail_with=OSError("disk full"))

    with pytest.raises(AssemblyFailed, match="disk full"):
        await ClipAssembler(muxer, file_manager).assemble(
            clips, run_dir, file_manager.new_output_path("abc123"),
        )


@pytest.mark.asyncio
async def test_missing_clip_fails_before_muxing(file_manager, run_dir, clips):
    muxer = FakeMuxer()
    missing = str(run_dir / "clips" / "clip_3.mp4")

    with pytest.raises(MissingClip) as exc_info:
        await ClipAssembler(muxer, file_manager).assemble(
            clips + [missing], run_dir, file_manager.new_output_path("abc123"),
        )

    assert exc_info.value.index == 3
    assert exc_info.value.path == missing
    assert muxer.manifests == []


@pytest.mark.asyncio
async def test_no_clips_is_assembly_failure(file_manager, run_dir):
    with pytest.raises(AssemblyFailed):
        await ClipAssembler(FakeMuxer(), file_manager).assemble(
            [], run_dir, file_manager.new_output_path("abc123"),
        )


def test_concat_manifest_unlinks_on_error(tmp_path):
    clip = tmp_path / "clip_1.mp4"
    clip.write_bytes(b"x")
    list_file = tmp_path / "concat_list.txt"

    with pytest.raises(RuntimeError):
        with concat_manifest(list_file, [clip]) as path:
            assert path.read_text() == f"file '{clip.resolve()}'\n"
            raise RuntimeError("mux failed")

    assert not list_file.exists()


def test_concat_manifest_escapes_single_quotes(tmp_path):
    clip_dir = tmp_path / "lesson's notes"
    clip_dir.mkdir()
    clip = clip_dir / "clip_1.mp4"
    clip.write_bytes(b"x")

    with concat_manifest(tmp_path / "concat_list.txt", [clip]) as path:
        line = path.read_text()

    assert "lesson'\\''s notes/clip_1.mp4" in line
    assert line.startswith("file '") and line.endswith("'\n")


@pytest.mark.asyncio
async def test_assembles_clips_under_quoted_data_dir(tmp_path):
    file_manager = FileManager(tmp_path / "o'brien data", "http://test.local")
    run_dir = file_manager.create_run_dir("abc123")
    clips = [str(file_manager.save_clip(run_dir, i, f"clip-{i}".encode())) for i in (1, 2)]
    output = file_manager.new_output_path("abc123")

    await ClipAssembler(FakeMuxer(), file_manager).assemble(clips, run_dir, output)

    assert output.read_bytes() == b"clip-1clip-2"


@pytest.mark.asyncio
async def test_ffmpeg_muxer_uses_concat_demuxer_stream_copy(tmp_path):
    manifest = tmp_path / "concat_list.txt"
    output = tmp_path / "out.mp4"

    with patch("storygen.services.collaborators.ffmpeg.subprocess.run") as run:
        await FfmpegMuxer().concat(manifest, output)

    command = run.call_args.args[0]
    assert command == [
        "ffmpeg", "-y", "-f", "concat", "-safe", "0",
        "-i", str(manifest), "-c", "copy", str(output),
    ]
    assert run.call_args.kwargs == {"check": True, "capture_output": True}


@pytest.mark.asyncio
async def test_ffmpeg_muxer_propagates_failure(tmp_path):
    error = subprocess.CalledProcessError(1, ["ffmpeg"], stderr=b"boom")

    with patch("storygen.services.collaborators.ffmpeg.subprocess.run", side_effect=error):
        with pytest.raises(subprocess.CalledProcessError):
            await FfmpegMuxer().concat(tmp_path / "list.txt", tmp_path / "out.mp4")
