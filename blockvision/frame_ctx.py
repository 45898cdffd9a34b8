import logging
import cv2
import numpy as np
from typing import Dict, List, Optional, Tuple
from blockvision.block import Block
from blockvision.type_defs import img_bgr_t, img_gray_t, flow_t, flow_estimator_t

logger = logging.getLogger(__name__)


class FrameSizeError(ValueError):
    """A frame does not match the size the context was set up with."""


class MissingFrameError(RuntimeError):
    """A frame was needed before `set_frame` provided one."""


class MissingPrevFrameError(MissingFrameError):
    """Motion data was requested before a previous frame exists."""


class DisFlowEstimator:
    """Dense optical flow with OpenCV's DIS algorithm."""

    def __init__(self, preset: int = cv2.DISOPTICAL_FLOW_PRESET_ULTRAFAST):
        self.preset = preset
        self._dis = cv2.DISOpticalFlow_create(preset)

    def __call__(self, prev_gray: img_gray_t, cur_gray: img_gray_t) -> flow_t:
        return self._dis.calc(prev_gray, cur_gray, None)


class FrameCtx:
    """
    Holds the current/previous frame and lazily computed data derived from them.

    Attributes:
        frame: current frame (BGR, uint8).
        prev_frame: previous frame, or None before the second `set_frame`.
        cur_blocks: blocks of the current frame, once detected / tracked.
        prev_blocks: tracked blocks of the previous frame, written by the tracker.

    Optical flow, the flow-warped previous frame and the per-pixel color
    distance are memoized; every change of `frame` drops all three together.

    Stages that keep their own temporal state (the temporal denoiser) store a
    named baseline with `set_baseline`. Baselines survive `set_frame`, and the
    derived data can be computed against one by passing its name.
    """

    def __init__(self, flow_estimator: Optional[flow_estimator_t] = None):
        self.flow_estimator: flow_estimator_t = \
            flow_estimator if flow_estimator is not None else DisFlowEstimator()
        self.frame: Optional[img_bgr_t] = None
        self.prev_frame: Optional[img_bgr_t] = None
        self.cur_blocks: Optional[List[Block]] = None
        self.prev_blocks: Optional[List[Block]] = None
        self.frame_idx = 0

        self._capture_size: Optional[Tuple[int, int]] = None
        self._baselines: Dict[str, img_bgr_t] = {}
        # Derived data keyed by baseline name, None for the previous frame
        self._optic_flow: Dict[Optional[str], flow_t] = {}
        self._warped_prev: Dict[Optional[str], img_bgr_t] = {}
        self._color_dist: Dict[Optional[str], np.ndarray] = {}

        # Coordinate grids for remapping; created when frame size is first known
        self._grid_x: Optional[np.ndarray] = None
        self._grid_y: Optional[np.ndarray] = None

    # ------------------- Frame management -------------------

    @property
    def has_prev_frame(self) -> bool:
        return self.prev_frame is not None

    @property
    def frame_size(self) -> Tuple[int, int]:
        """(width, height) of the current frame."""
        h, w = self.require_frame().shape[:2]
        return w, h

    def set_frame(self, img: img_bgr_t):
        """Advance to a new captured frame; the current one becomes the previous one."""
        _check_format(img)
        size = (img.shape[1], img.shape[0])
        if self._capture_size is None:
            self._capture_size = size
        elif size != self._capture_size:
            raise FrameSizeError(
                f"Frame size {size[0]}x{size[1]} does not match the first frame "
                f"{self._capture_size[0]}x{self._capture_size[1]}.")

        self.prev_frame = self.frame
        self.frame = img
        self.cur_blocks = None
        self.frame_idx += 1
        self._invalidate()

    def replace_frame(self, img: img_bgr_t):
        """Install a transformed version of the current frame (between pipeline stages)."""
        _check_format(img)
        self.frame = img
        self._invalidate()

    def _invalidate(self):
        self._optic_flow.clear()
        self._warped_prev.clear()
        self._color_dist.clear()

    def require_frame(self) -> img_bgr_t:
        if self.frame is None:
            raise MissingFrameError("No frame set; call set_frame first.")
        return self.frame

    # ------------------- Stage baselines -------------------

    def has_baseline(self, name: str) -> bool:
        return name in self._baselines

    def set_baseline(self, name: str, img: img_bgr_t):
        """
        Store the frame a pipeline stage wants to compare the next frame against.
        Baselines live across frames; the derived data computed against the
        old baseline is dropped.
        """
        _check_format(img)
        self._baselines[name] = img
        self._drop_derived(name)

    def clear_baseline(self, name: str):
        self._baselines.pop(name, None)
        self._drop_derived(name)

    def _drop_derived(self, key: Optional[str]):
        self._optic_flow.pop(key, None)
        self._warped_prev.pop(key, None)
        self._color_dist.pop(key, None)

    def _reference(self, baseline: Optional[str]) -> img_bgr_t:
        if baseline is None:
            if self.prev_frame is None:
                raise MissingPrevFrameError(
                    "Optical flow needs a previous frame; check has_prev_frame first.")
            return self.prev_frame
        if baseline not in self._baselines:
            raise MissingPrevFrameError(
                f"No baseline '{baseline}' stored; check has_baseline first.")
        return self._baselines[baseline]

    # ------------------- Derived data -------------------
    # `baseline=None` compares against the previous frame, a name against
    # the stage baseline stored under that name.

    def ensure_optical_flow(self, baseline: Optional[str] = None) -> flow_t:
        """Dense flow from the reference frame's grid onto the current frame (HxWx2 float32)."""
        if baseline not in self._optic_flow:
            ref = self._reference(baseline)
            frame = self.require_frame()
            if ref.shape != frame.shape:
                raise FrameSizeError(
                    f"Reference frame {ref.shape[:2]} and current frame "
                    f"{frame.shape[:2]} differ in size.")
            ref_gray = cv2.cvtColor(ref, cv2.COLOR_BGR2GRAY)
            cur_gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
            flow = np.asarray(self.flow_estimator(ref_gray, cur_gray), dtype=np.float32)
            if flow.shape != (*cur_gray.shape, 2):
                raise FrameSizeError(
                    f"Flow field shape {flow.shape} does not match frame {cur_gray.shape}.")
            self._optic_flow[baseline] = flow
        return self._optic_flow[baseline]

    def ensure_warped_prev(self, baseline: Optional[str] = None) -> img_bgr_t:
        """Reference frame sampled at position + flow(position), black outside the image."""
        if baseline not in self._warped_prev:
            flow = self.ensure_optical_flow(baseline)
            grid_x, grid_y = self._coordinate_grids()
            map_x = grid_x + flow[..., 0]
            map_y = grid_y + flow[..., 1]
            self._warped_prev[baseline] = cv2.remap(
                self._reference(baseline), map_x, map_y,
                interpolation=cv2.INTER_LINEAR,
                borderMode=cv2.BORDER_CONSTANT,
                borderValue=(0, 0, 0))
        return self._warped_prev[baseline]

    def ensure_color_distance(self, baseline: Optional[str] = None) -> np.ndarray:
        """Per-pixel euclidean BGR distance between the frame and the warped reference frame."""
        if baseline not in self._color_dist:
            warped = self.ensure_warped_prev(baseline)
            diff = self.require_frame().astype(np.float32) - warped.astype(np.float32)
            self._color_dist[baseline] = np.sqrt(np.sum(diff * diff, axis=2))
        return self._color_dist[baseline]

    @property
    def optical_flow(self) -> Optional[flow_t]:
        """Memoized previous-frame flow if already computed this cycle, without computing it."""
        return self._optic_flow.get(None)

    def _coordinate_grids(self) -> Tuple[np.ndarray, np.ndarray]:
        """X/Y coordinate grids for remapping, rebuilt whenever the frame size changes."""
        h, w = self.require_frame().shape[:2]
        if self._grid_x is None or self._grid_x.shape != (h, w):
            self._grid_x, self._grid_y = np.meshgrid(
                np.arange(w, dtype=np.float32), np.arange(h, dtype=np.float32))
        return self._grid_x, self._grid_y




def _check_format(img: img_bgr_t):
    if not isinstance(img, np.ndarray) or img.ndim != 3 or img.shape[2] != 3 \
            or img.dtype != np.uint8 or img.size == 0:
        raise ValueError(
            f"Expected a non-empty 3-channel uint8 frame, got "
            f"{getattr(img, 'shape', None)} {getattr(img, 'dtype', None)}")
