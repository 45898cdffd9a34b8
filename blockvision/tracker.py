import logging
import cv2
import numpy as np
from dataclasses import dataclass
from typing import List, Optional
from blockvision.block import Block
from blockvision.debuggable import Debuggable
from blockvision.frame_ctx import FrameCtx
from blockvision.type_defs import flow_t, img_bgr_t

logger = logging.getLogger(__name__)


@dataclass
class TrackerCfg:
    sample_count: int = 20        # sample points per block
    match_threshold: float = 0.7  # minimum hit fraction for a candidate to qualify
    shrink_factor: float = 0.8    # samples are drawn from the block rect scaled by this
    id_wrap: int = 1000           # ids cycle through [0, id_wrap)
    seed: Optional[int] = 0       # seed of the sampling rng, None for nondeterministic

    def __post_init__(self):
        if self.sample_count < 1:
            raise ValueError(f"sample_count must be >= 1, got {self.sample_count}")
        if not 0.0 <= self.match_threshold <= 1.0:
            raise ValueError(f"match_threshold must be within [0, 1], got {self.match_threshold}")
        if not 0.0 < self.shrink_factor <= 1.0:
            raise ValueError(f"shrink_factor must be within (0, 1], got {self.shrink_factor}")
        if self.id_wrap < 1:
            raise ValueError(f"id_wrap must be >= 1, got {self.id_wrap}")


def sample_points(block: Block, n: int, shrink: float, rng: np.random.Generator) -> np.ndarray:
    """
    `n` uniform random points inside the block's rotated rectangle scaled by `shrink`.
    Offsets are drawn in the block frame and rotated by the block angle, the
    same axes cv2.boxPoints uses. Returns an (n, 2) array of (x, y).
    """
    w, h = block.size
    u = rng.uniform(-0.5, 0.5, n) * w * shrink
    v = rng.uniform(-0.5, 0.5, n) * h * shrink
    theta = np.deg2rad(block.angle)
    cos_t, sin_t = np.cos(theta), np.sin(theta)
    x = block.center[0] + u * cos_t - v * sin_t
    y = block.center[1] + u * sin_t + v * cos_t
    return np.stack([x, y], axis=1)


def project_points(points: np.ndarray, flow: flow_t) -> np.ndarray:
    """
    Move points back along the flow (nearest pixel lookup) to where they were
    in the previous frame. Points outside the image, before or after the
    projection, are dropped.
    """
    h, w = flow.shape[:2]
    xs, ys = points[:, 0], points[:, 1]
    ix = np.rint(xs).astype(np.int64)
    iy = np.rint(ys).astype(np.int64)
    valid = (xs >= 0) & (xs < w) & (ys >= 0) & (ys < h) & \
            (ix >= 0) & (ix < w) & (iy >= 0) & (iy < h)
    if not np.any(valid):
        return np.zeros((0, 2), dtype=np.float64)

    vec = flow[iy[valid], ix[valid]].astype(np.float64)
    projected = points[valid] - vec
    in_bounds = (projected[:, 0] >= 0) & (projected[:, 0] < w) & \
                (projected[:, 1] >= 0) & (projected[:, 1] < h)
    return projected[in_bounds]


def hit_fraction(points: np.ndarray, candidate: Block, total: int) -> float:
    """Fraction of `total` samples whose projected point lies inside (or on) the candidate contour."""
    if total <= 0 or len(points) == 0 or len(candidate.contour) == 0:
        return 0.0
    hits = sum(
        1 for x, y in points
        if cv2.pointPolygonTest(candidate.contour, (float(x), float(y)), False) >= 0
    )
    return hits / total


class BlockTracker:
    """
    Gives detected blocks identifiers that stay stable across frames.

    Sample points of each new block are projected back along the optical flow
    and tested against the contours of last frame's blocks of the same color.
    The candidate holding the largest share of samples (at least
    `match_threshold`) hands its id over; ties go to the lowest id. Blocks
    without a qualifying candidate get a fresh id.

    Samples lost outside the image still count in the denominator of the
    hit fraction, so blocks at the frame border match less easily.

    Debug options: "samples".
    """

    def __init__(self, cfg: TrackerCfg | None = None):
        self.cfg = cfg or TrackerCfg()
        self.rng = np.random.default_rng(self.cfg.seed)
        self._id_counter = 0
        self.dbg = Debuggable("tracker")
        self.dbg.register("samples")

    def next_id(self) -> int:
        """Issue the next identifier, wrapping to 0 after id_wrap - 1."""
        new_id = self._id_counter
        self._id_counter = (self._id_counter + 1) % self.cfg.id_wrap
        return new_id

    def track(self, ctx: FrameCtx, blocks: List[Block]) -> List[Block]:
        self.dbg.clear()
        prev_blocks = ctx.prev_blocks

        if not prev_blocks or not ctx.has_prev_frame:
            tracked = [block.with_id(self.next_id()) for block in blocks]
        else:
            flow = ctx.ensure_optical_flow()
            vis = ctx.frame.copy() if self.dbg.is_enabled("samples") else None
            tracked = [self._match(block, prev_blocks, flow, vis) for block in blocks]
            if vis is not None:
                self.dbg.add_entry("samples", vis)

        ctx.prev_blocks = tracked
        ctx.cur_blocks = tracked
        return tracked

    def _match(self, block: Block, prev_blocks: List[Block], flow: flow_t,
               vis: Optional[img_bgr_t]) -> Block:
        cfg = self.cfg
        points = sample_points(block, cfg.sample_count, cfg.shrink_factor, self.rng)
        projected = project_points(points, flow)
        if vis is not None:
            _draw_samples(vis, points, projected, block.color.bgr)

        best: Optional[Block] = None
        best_frac = 0.0
        candidates = sorted(
            (b for b in prev_blocks if b.color.name == block.color.name), key=lambda b: b.id)
        for candidate in candidates:
            frac = hit_fraction(projected, candidate, cfg.sample_count)
            if frac >= cfg.match_threshold and (best is None or frac > best_frac):
                best, best_frac = candidate, frac

        if best is not None:
            logger.debug("%s block keeps id %d (hit fraction %.2f)", block.color.name, best.id, best_frac)
            return block.with_id(best.id)

        new_id = self.next_id()
        logger.debug("%s block gets new id %d", block.color.name, new_id)
        return block.with_id(new_id)


def _draw_samples(vis: img_bgr_t, points: np.ndarray, projected: np.ndarray, bgr):
    for x, y in points:
        cv2.circle(vis, (int(round(x)), int(round(y))), 2, bgr, -1)
    for x, y in projected:
        cv2.circle(vis, (int(round(x)), int(round(y))), 2, (255, 255, 255), 1)
