import cv2
import numpy as np
import pytest

from blockvision.block import Block
from blockvision.color_defs import Color, RED_R9000P


class ConstantFlow:
    """Flow estimator reporting the same (dx, dy) everywhere; counts its calls."""

    def __init__(self, dx: float = 0.0, dy: float = 0.0):
        self.dx, self.dy = dx, dy
        self.calls = 0

    def __call__(self, prev_gray, cur_gray):
        self.calls += 1
        flow = np.zeros((*cur_gray.shape[:2], 2), dtype=np.float32)
        flow[..., 0] = self.dx
        flow[..., 1] = self.dy
        return flow


def hsv_to_bgr(hsv):
    px = np.uint8([[list(hsv)]])
    return tuple(int(c) for c in cv2.cvtColor(px, cv2.COLOR_HSV2BGR)[0, 0])


@pytest.fixture
def zero_flow():
    return ConstantFlow()


@pytest.fixture
def constant_flow():
    return ConstantFlow


@pytest.fixture
def make_frame():
    """Gray background (S=0) with optional filled axis-aligned rects given in HSV."""
    def _make(w=320, h=240, rects=(), background=(100, 100, 100)):
        frame = np.full((h, w, 3), background, dtype=np.uint8)
        for (x, y, rw, rh, hsv) in rects:
            frame[y:y + rh, x:x + rw] = hsv_to_bgr(hsv)
        return frame
    return _make


@pytest.fixture
def make_block():
    """Block whose contour is its own rotated rectangle."""
    def _make(center, size, angle=0.0, color: Color = RED_R9000P, id=-1):
        box = cv2.boxPoints((center, size, angle))
        contour = np.round(box).astype(np.int32).reshape(-1, 1, 2)
        return Block(center=center, size=size, angle=angle, color=color, contour=contour, id=id)
    return _make
