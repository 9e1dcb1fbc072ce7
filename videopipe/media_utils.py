# videopipe/media_utils.py
from dataclasses import dataclass
from typing import List, Tuple

# (min source height, target bitrate kbps, crf); first match wins
BITRATE_LADDER: List[Tuple[int, int, int]] = [
    (1080, 1000, 28),
    (720, 600, 27),
    (480, 400, 26),
    (0, 250, 25),
]

THUMBNAIL_MAX_OFFSET_S = 5.0
THUMBNAIL_SIZE = (320, 180)


@dataclass(frozen=True)
class VideoInfo:
    width: int
    height: int
    duration: float

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"


@dataclass(frozen=True)
class EncodingTier:
    bitrate_kbps: int
    crf: int

    @property
    def maxrate_kbps(self) -> int:
        return round(self.bitrate_kbps * 1.1)

    @property
    def bufsize_kbps(self) -> int:
        return round(self.bitrate_kbps * 1.2)


def select_tier(source_height: int, max_bitrate_kbps: int | None = None) -> EncodingTier:
    """
    Pick the ladder entry for a source height (inclusive lower bounds).
    The bitrate is capped at `max_bitrate_kbps` when one is given.
    """
    for min_height, bitrate, crf in BITRATE_LADDER:
        if source_height >= min_height:
            break
    else:
        # negative heights come from broken probes; treat them as the lowest tier
        _, bitrate, crf = BITRATE_LADDER[-1]

    if max_bitrate_kbps is not None:
        bitrate = min(bitrate, max_bitrate_kbps)
    return EncodingTier(bitrate_kbps=bitrate, crf=crf)


def thumbnail_timestamp(duration: float) -> float:
    return min(THUMBNAIL_MAX_OFFSET_S, max(duration, 0.0) * 0.1)


def remap_progress(percent: float, start: int, end: int) -> int:
    """Map an encoder percentage (0-100) into the [start, end] slice of overall progress."""
    percent = min(100.0, max(0.0, percent))
    return round(start + (end - start) * percent / 100.0)


def parse_resolution(value: str) -> Tuple[int, int] | None:
    """Parse `WxH`; empty or invalid values disable scaling."""
    if not value:
        return None
    try:
        width, height = (int(part) for part in value.lower().split("x", 1))
    except ValueError:
        return None
    if width <= 0 or height <= 0:
        return None
    return width, height
