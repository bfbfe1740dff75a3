import os
from typing import List

from errors import AspectRatioError, ResolutionTooLowError
from schema import Rung

MIN_DIMENSION = 360

# (height, canonical 16:9 width) per tier, ascending.
LADDER_TIERS = [
    (360, 640),
    (480, 854),
    (720, 1280),
    (1080, 1920),
    (1620, 2880),
    (2430, 4320),
]


def build_ladder(width: int, height: int, output_dir: str) -> List[Rung]:
    """
    Derive the rungs a source of width x height can be encoded to.

    Output widths are fixed per tier, so every rung is 16:9 whatever the
    source aspect ratio is.
    """
    if height > width:
        raise AspectRatioError("Aspect ratio should be landscape")
    if min(width, height) < MIN_DIMENSION:
        raise ResolutionTooLowError(f"Video resolution too low: {width}x{height}")

    return [
        Rung(dir=os.path.join(output_dir, f"{tier_height}p"), height=tier_height, width=tier_width)
        for tier_height, tier_width in LADDER_TIERS
        if tier_height <= height
    ]
