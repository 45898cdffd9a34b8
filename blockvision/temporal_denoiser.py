import logging
import cv2
import numpy as np
from blockvision.frame_ctx import FrameCtx
from blockvision.preproc_step import PreprocStep, PreprocType
from blockvision.type_defs import img_bgr_t, flow_t

logger = logging.getLogger(__name__)


class TemporalDenoiseStep(PreprocStep):
    """
    Motion compensated temporal denoising.

    The previous frame is warped onto the current one with dense optical flow
    and alpha-blended with it:
        blended = alpha * current + (1 - alpha) * warped_prev
    Wherever the color distance between the current frame and the warped
    previous frame exceeds `threshold`, the raw current pixel is kept instead.
    Samples that fell outside the previous frame read as black.

    The composited output (the raw frame on the first call) is stored in the
    FrameCtx as this step's baseline for the next frame, so stages placed
    after the denoiser never change what it blends against. Steps sharing a
    context need distinct `baseline_key`s.

    Debug options: "flow", "warp", "diff", "mask", "output".
    """
    step_type = PreprocType.TEMPORAL_DENOISE

    def __init__(self,
                 alpha: float = 0.8,
                 threshold: float = 30.0,
                 flow_grid_step: int = 20,
                 baseline_key: str = "temporal_denoise",
                 init_debug: bool = False):
        super().__init__(init_debug)
        if not 0.0 <= alpha <= 1.0:
            raise ValueError(f"alpha must be within [0, 1], got {alpha}")
        self.alpha = alpha            # weight of the live frame
        self.threshold = threshold    # rejection threshold on the BGR distance
        self.flow_grid_step = flow_grid_step
        self.baseline_key = baseline_key
        self.dbg.register("flow", init_debug)
        self.dbg.register("warp", init_debug)
        self.dbg.register("diff", init_debug)
        self.dbg.register("mask", init_debug)

    def transform(self, ctx: FrameCtx) -> img_bgr_t:
        frame = ctx.require_frame()
        key = self.baseline_key

        # First frame: nothing to blend with, it becomes the baseline
        if not ctx.has_baseline(key):
            ctx.set_baseline(key, frame.copy())
            return frame

        warped = ctx.ensure_warped_prev(key)
        dist = ctx.ensure_color_distance(key)

        if self.dbg.is_enabled("flow"):
            self.dbg.add_entry("flow", draw_flow_arrows(ctx.ensure_optical_flow(key), self.flow_grid_step))
        if self.dbg.is_enabled("warp"):
            self.dbg.add_entry("warp", warped.copy())
        if self.dbg.is_enabled("diff"):
            self.dbg.add_entry("diff", color_map_distance(dist))

        # Reject blending where the motion compensation is not trustworthy
        mask = dist > self.threshold
        if self.dbg.is_enabled("mask"):
            self.dbg.add_entry("mask", mask.astype(np.uint8) * 255)

        blended = cv2.addWeighted(frame, self.alpha, warped, 1.0 - self.alpha, 0.0)
        blended[mask] = frame[mask]

        ctx.set_baseline(key, blended.copy())
        logger.debug("temporal denoise: %d/%d pixels rejected", int(np.count_nonzero(mask)), mask.size)
        return blended

    def __repr__(self) -> str:
        return f"TemporalDenoiseStep(alpha={self.alpha}, threshold={self.threshold})"


def draw_flow_arrows(flow: flow_t, step: int) -> img_bgr_t:
    """Flow vectors sampled on a grid, drawn as green arrows on black."""
    h, w = flow.shape[:2]
    vis = np.zeros((h, w, 3), dtype=np.uint8)
    for y in range(0, h, step):
        for x in range(0, w, step):
            dx, dy = flow[y, x]
            cv2.arrowedLine(vis, (x, y), (int(round(x + dx)), int(round(y + dy))), (0, 255, 0), 1)
    return vis


def color_map_distance(dist: np.ndarray) -> img_bgr_t:
    """Distance map scaled to 0..255 and colored with the JET colormap."""
    max_val = float(dist.max()) if dist.size else 0.0
    scale = 255.0 / max_val if max_val > 0 else 0.0
    dist_u8 = cv2.convertScaleAbs(dist, alpha=scale)
    return cv2.applyColorMap(dist_u8, cv2.COLORMAP_JET)
