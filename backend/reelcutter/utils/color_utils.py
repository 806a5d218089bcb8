"""
Color helpers for caption overlays.
"""

import random


def hsl_to_hex(hue: float, saturation: float, lightness: float) -> str:
    """Convert HSL (degrees, percent, percent) to a #rrggbb string."""
    s = saturation / 100
    l = lightness / 100
    a = s * min(l, 1 - l)

    def channel(n: int) -> str:
        k = (n + hue / 30) % 12
        color = l - a * max(-1, min(k - 3, 9 - k, 1))
        return f"{round(255 * color):02x}"

    return f"#{channel(0)}{channel(8)}{channel(4)}"


def random_title_color(rng: random.Random | None = None) -> str:
    """Pick a saturated dark color readable behind white overlay text."""
    rng = rng or random
    return hsl_to_hex(rng.uniform(0, 360), 100, 33)


def ffmpeg_color(hex_color: str) -> str:
    """Convert #rrggbb to ffmpeg's 0xrrggbb notation."""
    return "0x" + hex_color.lstrip("#")
