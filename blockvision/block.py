import cv2
import numpy as np
from dataclasses import dataclass, field, replace
from blockvision.color_defs import Color
from blockvision.type_defs import hsv_stats_t, point_t
from typing import Tuple

UNASSIGNED_ID = -1


@dataclass(frozen=True, eq=False)
class Block:
    """Represents a detected color block with position, size, angle, color info, and HSV stats.

    `size` is canonical (width >= height); `angle` is in degrees and follows the
    cv2.minAreaRect convention, plus 90 when width and height were swapped.
    `id` stays UNASSIGNED_ID until a tracker sets it.
    """
    center: point_t
    size: Tuple[float, float]
    angle: float
    color: Color
    color_std: hsv_stats_t = (0.0, 0.0, 0.0)
    mean_hsv: hsv_stats_t = (0.0, 0.0, 0.0)
    # store the absolute contour
    contour: np.ndarray = field(default_factory=lambda: np.zeros((0, 1, 2), dtype=np.int32))
    id: int = UNASSIGNED_ID

    @property
    def is_tracked(self) -> bool:
        return self.id != UNASSIGNED_ID

    @property
    def area(self) -> float:
        if len(self.contour) == 0:
            return 0.0
        return float(cv2.contourArea(self.contour))

    def with_id(self, new_id: int) -> 'Block':
        return replace(self, id=new_id)

    def relative_center(self, frame_w: int, frame_h: int) -> point_t:
        """Center relative to the frame center, in units of frame size."""
        return (
            (self.center[0] - frame_w / 2) / frame_w,
            (self.center[1] - frame_h / 2) / frame_h,
        )

    def relative_size(self, frame_w: int, frame_h: int) -> Tuple[float, float]:
        return (self.size[0] / frame_w, self.size[1] / frame_h)
