"""Aspect ratio and pixel dimension helpers"""

from math import gcd
from typing import Optional, Tuple

from models.requests import ASPECT_RATIOS, DEFAULT_ASPECT_RATIO, RESOLUTIONS

TARGET_LONG_EDGE = 1024
MIN_EDGE = 256
MAX_EDGE = 4096


def sanitize_aspect_ratio(ratio: Optional[str]) -> str:
    """Return the canonical token, or '' when it is not a known ratio"""
    canonical = (ratio or "").strip().upper()
    return canonical if canonical in ASPECT_RATIOS else ""


def sanitize_resolution(resolution: Optional[str]) -> str:
    canonical = (resolution or "").strip().upper()
    return canonical if canonical in RESOLUTIONS else ""


def clamp_edge(value: int) -> int:
    return max(MIN_EDGE, min(MAX_EDGE, int(value)))


def dimensions_for_aspect_ratio(ratio: str) -> Tuple[int, int]:
    parts = (ratio or DEFAULT_ASPECT_RATIO).split(":")
    if len(parts) != 2:
        parts = ["1", "1"]
    try:
        w = max(1.0, float(parts[0]))
        h = max(1.0, float(parts[1]))
    except ValueError:
        w = h = 1.0

    if w >= h:
        width = TARGET_LONG_EDGE
        height = int(round(TARGET_LONG_EDGE * h / w))
    else:
        height = TARGET_LONG_EDGE
        width = int(round(TARGET_LONG_EDGE * w / h))
    return clamp_edge(width), clamp_edge(height)


def aspect_ratio_from_dimensions(width: int, height: int) -> str:
    """Reduced ratio when it is one of the known tokens, else ''"""
    if width <= 0 or height <= 0:
        return ""
    divisor = gcd(int(width), int(height))
    ratio = f"{int(width) // divisor}:{int(height) // divisor}"
    return ratio if ratio in ASPECT_RATIOS else ""
