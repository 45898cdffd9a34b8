from dataclasses import dataclass
from typing import Dict, List, Tuple
from blockvision.type_defs import hsv_t, bgr_t


@dataclass(frozen=True)
class Color:
    """Stores color name, HSV ranges, and BGR values for drawing.

    A hue that straddles the 0/180 seam (red) is described by two ranges.
    Ranges are stored as tuples, so a Color is hashable and presets shared
    between detectors cannot be edited in place.
    """
    name: str
    hsv_ranges: Tuple[Tuple[hsv_t, hsv_t], ...]
    bgr: bgr_t

    def __post_init__(self):
        ranges = tuple((tuple(lower), tuple(upper)) for lower, upper in self.hsv_ranges)
        object.__setattr__(self, "hsv_ranges", ranges)
        object.__setattr__(self, "bgr", tuple(self.bgr))


# ---------- Global Color Definitions ----------

RED_R9000P = Color(
    name='RED_R9000P',
    hsv_ranges=[
        ((0, 70, 50), (3, 160, 225)),
        ((165, 70, 50), (180, 160, 225))
    ],
    bgr=(0, 0, 255)
)

BLUE_R9000P = Color(
    name='BLUE_R9000P',
    hsv_ranges=[
        ((110, 80, 70), (125, 180, 230))
    ],
    bgr=(255, 0, 0)
)

YELLOW_R9000P = Color(
    name='YELLOW_R9000P',
    hsv_ranges=[
        ((17, 60, 140), (32, 125, 255))
    ],
    bgr=(0, 255, 255)
)

COLOR_DEF_R9000P = [RED_R9000P, BLUE_R9000P, YELLOW_R9000P]

RED_ARDUCAM = Color(
    name='RED_ARDUCAM',
    hsv_ranges=[
        ((0, 110, 35), (10, 255, 250)),
        ((175, 110, 50), (180, 255, 250))
    ],
    bgr=(0, 0, 255)
)

BLUE_ARDUCAM = Color(
    name='BLUE_ARDUCAM',
    hsv_ranges=[
        ((100, 100, 35), (120, 255, 255))
    ],
    bgr=(255, 0, 0)
)

YELLOW_ARDUCAM = Color(
    name='YELLOW_ARDUCAM',
    hsv_ranges=[
        ((13, 100, 40), (28, 255, 255))
    ],
    bgr=(0, 255, 255)
)

COLOR_DEF_ARDUCAM = [RED_ARDUCAM, BLUE_ARDUCAM, YELLOW_ARDUCAM]

COLOR_PRESETS: Dict[str, List[Color]] = {
    'r9000p': COLOR_DEF_R9000P,
    'arducam': COLOR_DEF_ARDUCAM,
}


def get_color_preset(name: str) -> List[Color]:
    """Look up a named color preset (case-insensitive)."""
    try:
        return list(COLOR_PRESETS[name.lower()])
    except KeyError:
        raise KeyError(
            f"Unknown color preset '{name}', known presets: {sorted(COLOR_PRESETS)}") from None
