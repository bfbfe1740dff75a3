import logging
import os
import stat

import pytest

from errors import TranscodeError
from ladder import build_ladder
from transcode import build_ffmpeg_command, parse_duration, transcode


@pytest.fixture
def fake_ffmpeg(tmp_path):
    """Write an executable shell script standing in for the ffmpeg binary."""
    def _make(body):
        script = tmp_path / "ffmpeg"
        script.write_text("#!/bin/sh\n" + body)
        script.chmod(script.stat().st_mode | stat.S_IXUSR)
        return str(script)
    return _make


def test_parse_duration():
    assert parse_duration("01:02:03.50") == 3723.5
    assert parse_duration("garbage") == 0.0


def test_single_process_writes_every_rung():
    rungs = build_ladder(1920, 1080, "/work/out")
    command = build_ffmpeg_command("/work/in/clip.mp4", rungs, segment_seconds=6)

    assert command[0] == "ffmpeg"
    assert command[command.index("-i") + 1] == "/work/in/clip.mp4"

    filters = command[command.index("-filter_complex") + 1]
    assert filters.startswith("[0:v]split=4[v0][v1][v2][v3]")
    assert "[v3]scale=1920:1080[v3out]" in filters

    for i, rung in enumerate(rungs):
        assert f"[v{i}out]" in command
        assert f"{rung.dir}/index.m3u8" in command
        assert f"{rung.dir}/segment_%03d.ts" in command
    assert command.count("hls") == len(rungs)
    assert command.count("6") == len(rungs)


def test_bitrate_grows_with_rung():
    command = build_ffmpeg_command("in.mp4", build_ladder(1280, 720, "/out"))
    bitrates = [command[i + 1] for i, arg in enumerate(command) if arg == "-b:v"]
    assert bitrates == ["800k", "1400k", "2800k"]


def test_no_rungs():
    with pytest.raises(TranscodeError):
        build_ffmpeg_command("in.mp4", [])


@pytest.mark.asyncio
async def test_engine_cannot_start(tmp_path):
    rungs = build_ladder(640, 360, str(tmp_path))
    with pytest.raises(TranscodeError, match="Failed to start"):
        await transcode("job-1", "in.mp4", rungs, ffmpeg_bin=str(tmp_path / "no-ffmpeg"))


@pytest.mark.asyncio
async def test_engine_exits_non_zero(tmp_path):
    rungs = build_ladder(640, 360, str(tmp_path))
    with pytest.raises(TranscodeError, match="exited with code 1"):
        await transcode("job-1", "in.mp4", rungs, ffmpeg_bin="false")


@pytest.mark.asyncio
async def test_engine_error_text_is_reported(tmp_path, fake_ffmpeg, caplog):
    ffmpeg = fake_ffmpeg(
        "echo 'Input #0, mov,mp4,m4a,3gp,3g2,mj2, from in.mp4:' >&2\n"
        "echo '  Duration: 00:00:10.00, start: 0.000000, bitrate: 1205 kb/s' >&2\n"
        "echo 'frame=120' >&2\n"
        "echo 'out_time=00:00:05.000000' >&2\n"
        "echo 'progress=continue' >&2\n"
        "echo \"Unknown encoder 'libx264'\" >&2\n"
        "exit 1\n"
    )
    rungs = build_ladder(640, 360, str(tmp_path))
    caplog.set_level(logging.INFO, logger="transcode")

    with pytest.raises(TranscodeError) as excinfo:
        await transcode("job-1", "in.mp4", rungs, ffmpeg_bin=ffmpeg)

    message = str(excinfo.value)
    assert "Unknown encoder 'libx264'" in message
    assert "Duration: 00:00:10.00" in message
    assert "out_time=" not in message
    assert "progress=" not in message
    assert "frame=" not in message
    assert "Video duration: 00:00:10.00" in caplog.text
    assert "Transcode progress: 50%" in caplog.text


@pytest.mark.asyncio
async def test_engine_is_stopped_when_output_cannot_be_read(tmp_path, fake_ffmpeg):
    pid_file = tmp_path / "ffmpeg.pid"
    # A stderr line longer than the stream reader's buffer limit, then hang.
    ffmpeg = fake_ffmpeg(
        f"echo $$ > {pid_file}\n"
        "head -c 100000 /dev/zero | tr '\\0' 'x' >&2\n"
        "exec sleep 30\n"
    )
    rungs = build_ladder(640, 360, str(tmp_path))

    with pytest.raises(ValueError):
        await transcode("job-1", "in.mp4", rungs, ffmpeg_bin=ffmpeg)

    with pytest.raises(ProcessLookupError):
        os.kill(int(pid_file.read_text()), 0)
