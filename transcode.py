"""
HLS encoding of every rung in a single ffmpeg run.

The decoded input is split once and fanned out to one HLS muxer per rung, so
ffmpeg itself encodes the rungs in parallel. The caller only sees a single
completion signal: a normal return, or TranscodeError.
"""

import asyncio
import logging
import os
import re
from collections import deque
from typing import List

from errors import TranscodeError
from playlist import PLAYLIST_NAME
from schema import Rung

logger = logging.getLogger(__name__)

VIDEO_BITRATES = {
    360: "800k",
    480: "1400k",
    720: "2800k",
    1080: "5000k",
    1620: "8000k",
    2430: "14000k",
}
AUDIO_BITRATE = "128k"
SEGMENT_PATTERN = "segment_%03d.ts"
STDERR_TAIL_LINES = 40

# "-progress pipe:2" interleaves key=value lines with ffmpeg's own messages.
PROGRESS_LINE = re.compile(r"^[\w.]+=\S*$")
DURATION_PATTERN = re.compile(r"Duration: (\d{2}:\d{2}:\d{2}\.\d{2})")
TIME_PATTERN = re.compile(r"time=(\d{2}:\d{2}:\d{2}\.\d{2})")


def parse_duration(duration_str: str) -> float:
    """Parse duration from format HH:MM:SS.ms to seconds"""
    try:
        hours, minutes, seconds = duration_str.split(':')
        return float(hours) * 3600 + float(minutes) * 60 + float(seconds)
    except ValueError:
        return 0.0


def build_ffmpeg_command(input_path: str, rungs: List[Rung], segment_seconds: int = 10,
                         ffmpeg_bin: str = "ffmpeg") -> List[str]:
    if not rungs:
        raise TranscodeError("No rungs to transcode")

    splits = "".join(f"[v{i}]" for i in range(len(rungs)))
    filters = [f"[0:v]split={len(rungs)}{splits}"]
    filters += [
        f"[v{i}]scale={rung.width}:{rung.height}[v{i}out]"
        for i, rung in enumerate(rungs)
    ]

    command = [
        ffmpeg_bin, "-hide_banner", "-nostats", "-y",
        "-i", input_path,
        "-filter_complex", ";".join(filters),
        "-progress", "pipe:2",
    ]
    for i, rung in enumerate(rungs):
        bitrate = VIDEO_BITRATES.get(rung.height, "800k")
        command += [
            "-map", f"[v{i}out]",
            "-map", "0:a?",
            "-c:v", "libx264",
            "-preset", "veryfast",
            "-profile:v", "main",
            "-pix_fmt", "yuv420p",
            "-force_key_frames", f"expr:gte(t,n_forced*{segment_seconds})",
            "-b:v", bitrate,
            "-maxrate", bitrate,
            "-bufsize", bitrate,
            "-c:a", "aac",
            "-b:a", AUDIO_BITRATE,
            "-ac", "2",
            "-f", "hls",
            "-hls_time", str(segment_seconds),
            "-hls_playlist_type", "vod",
            "-hls_segment_filename", os.path.join(rung.dir, SEGMENT_PATTERN),
            os.path.join(rung.dir, PLAYLIST_NAME),
        ]
    return command


async def _follow_stderr(stream: asyncio.StreamReader, job_id: str, tail: deque) -> None:
    duration = 0.0
    last_progress = 0
    while True:
        raw = await stream.readline()
        if not raw:
            break
        line = raw.decode("utf-8", errors="ignore").rstrip()

        if not PROGRESS_LINE.match(line):
            tail.append(line)
            if not duration:
                duration_match = DURATION_PATTERN.search(line)
                if duration_match:
                    duration = parse_duration(duration_match.group(1))
                    logger.info("[%s] Video duration: %s", job_id, duration_match.group(1))
            continue

        time_match = TIME_PATTERN.search(line)
        if duration > 0 and time_match:
            progress = min(int(parse_duration(time_match.group(1)) / duration * 100), 100)
            if progress >= last_progress + 10:
                logger.info("[%s] Transcode progress: %d%%", job_id, progress)
                last_progress = progress


async def transcode(job_id: str, input_path: str, rungs: List[Rung], segment_seconds: int = 10,
                    ffmpeg_bin: str = "ffmpeg") -> None:
    command = build_ffmpeg_command(input_path, rungs, segment_seconds, ffmpeg_bin)
    logger.info("[%s] Starting transcode to %s", job_id, ", ".join(r.name for r in rungs))

    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise TranscodeError(f"Failed to start {ffmpeg_bin}: {e}") from e

    tail = deque(maxlen=STDERR_TAIL_LINES)
    try:
        await _follow_stderr(process.stderr, job_id, tail)
        returncode = await process.wait()
    finally:
        if process.returncode is None:
            logger.warning("[%s] Stopping ffmpeg (pid %s)", job_id, process.pid)
            process.kill()
            await process.wait()

    if returncode != 0:
        details = "\n".join(tail).strip()
        raise TranscodeError(details or f"{ffmpeg_bin} exited with code {returncode}")
    logger.info("[%s] Transcode finished", job_id)
