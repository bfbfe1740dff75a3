import asyncio
import json
import logging
import os
from typing import Tuple

from errors import ProbeError

logger = logging.getLogger(__name__)


def parse_probe_output(stdout: str) -> Tuple[int, int]:
    """Pull (width, height) of the first video stream out of ffprobe's JSON."""
    try:
        metadata = json.loads(stdout)
        stream = metadata["streams"][0]
        width, height = int(stream["width"]), int(stream["height"])
    except (ValueError, KeyError, IndexError, TypeError) as e:
        raise ProbeError(f"No decodable video stream found: {e}") from e

    if width <= 0 or height <= 0:
        raise ProbeError(f"Invalid video dimensions: {width}x{height}")
    return width, height


async def probe_resolution(file_path: str, ffprobe_bin: str = "ffprobe") -> Tuple[int, int]:
    if not os.path.isfile(file_path):
        raise ProbeError(f"Input file not found: {file_path}")

    command = [
        ffprobe_bin,
        "-v", "error",
        "-select_streams", "v:0",
        "-show_entries", "stream=width,height",
        "-of", "json",
        file_path,
    ]
    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise ProbeError(f"Failed to start {ffprobe_bin}: {e}") from e

    stdout, stderr = await process.communicate()
    if process.returncode != 0:
        message = stderr.decode("utf-8", errors="ignore").strip()
        if not message:
            message = f"{ffprobe_bin} exited with code {process.returncode}"
        raise ProbeError(f"Unable to read video file: {message}")

    width, height = parse_probe_output(stdout.decode("utf-8", errors="ignore"))
    logger.debug("Probed %s: %dx%d", file_path, width, height)
    return width, height
