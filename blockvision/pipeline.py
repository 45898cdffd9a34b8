import logging
from typing import List, Optional, Tuple
from blockvision.block import Block
from blockvision.color_defs import get_color_preset
from blockvision.color_detector import ColorDetector, DetectorCfg
from blockvision.debuggable import Debuggable
from blockvision.detector import Detector
from blockvision.frame_ctx import FrameCtx
from blockvision.preprocessor import PreprocPipeline, PreprocCfg
from blockvision.tracker import BlockTracker, TrackerCfg
from blockvision.type_defs import img_bgr_t, flow_estimator_t, point_t

logger = logging.getLogger(__name__)


class RobotVisionPipeline:
    """
    One processing cycle per captured frame:
        set frame -> preprocess -> detect -> track
    The FrameCtx is created once and reused for every frame of the run.
    """

    def __init__(self,
                 detector: Detector,
                 preproc: Optional[PreprocPipeline] = None,
                 tracker: Optional[BlockTracker] = None,
                 flow_estimator: Optional[flow_estimator_t] = None):
        self.detector = detector
        self.preproc = preproc
        self.tracker = tracker
        self.ctx = FrameCtx(flow_estimator)

        self.dbg = Debuggable("pipeline")
        if preproc is not None:
            self.dbg.add_child(preproc.dbg)
        self.dbg.add_child(detector.dbg)
        if tracker is not None:
            self.dbg.add_child(tracker.dbg)

    @classmethod
    def from_preset(cls,
                    preset_name: str,
                    preproc_cfg: Optional[PreprocCfg] = None,
                    detector_cfg: Optional[DetectorCfg] = None,
                    tracker_cfg: Optional[TrackerCfg] = None,
                    flow_estimator: Optional[flow_estimator_t] = None) -> 'RobotVisionPipeline':
        """Full pipeline detecting the colors of a named preset ("r9000p", "arducam")."""
        return cls(
            detector=ColorDetector(get_color_preset(preset_name), detector_cfg),
            preproc=PreprocPipeline.from_cfg(preproc_cfg or PreprocCfg()),
            tracker=BlockTracker(tracker_cfg),
            flow_estimator=flow_estimator,
        )

    def update_frame(self, frame: img_bgr_t) -> FrameCtx:
        ctx = self.ctx
        ctx.set_frame(frame)
        if self.preproc is not None:
            self.preproc.run(ctx)
        blocks = self.detector.detect_ctx(ctx)
        if self.tracker is not None:
            self.tracker.track(ctx, blocks)
        logger.debug("frame %d: %d blocks", ctx.frame_idx, len(ctx.cur_blocks or []))
        return ctx

    @property
    def blocks(self) -> List[Block]:
        return list(self.ctx.cur_blocks or [])

    def relative_blocks(self) -> List[Tuple[Block, point_t, Tuple[float, float]]]:
        """(block, relative center, relative size) for the current blocks."""
        if self.ctx.frame is None:
            return []
        w, h = self.ctx.frame_size
        return [(b, b.relative_center(w, h), b.relative_size(w, h)) for b in self.blocks]
