from typing import List

from schema import Rung

BANDWIDTH_STEP = 250000
PLAYLIST_NAME = "index.m3u8"


def generate_master_playlist(rungs: List[Rung]) -> str:
    lines = ["#EXTM3U"]
    for i, rung in enumerate(rungs):
        lines.append(
            f"#EXT-X-STREAM-INF:BANDWIDTH={(i + 1) * BANDWIDTH_STEP},RESOLUTION={rung.width}x{rung.height}"
        )
        lines.append(f"{rung.height}p/{PLAYLIST_NAME}")
    return "\n".join(lines)
