from abc import ABC, abstractmethod
from typing import List
from blockvision.block import Block
from blockvision.color_defs import Color
from blockvision.debuggable import Debuggable
from blockvision.frame_ctx import FrameCtx
from blockvision.type_defs import img_bgr_t


class Detector(ABC):
    """Finds blocks in an (already preprocessed) frame."""

    def __init__(self, detecting_colors: List[Color], name: str = "detector"):
        self.detecting_colors = list(detecting_colors)
        self.dbg = Debuggable(name)

    @abstractmethod
    def detect(self, frame: img_bgr_t) -> List[Block]:
        pass

    def detect_ctx(self, ctx: FrameCtx) -> List[Block]:
        """Detect on the context's current frame and store the result as its current blocks."""
        blocks = self.detect(ctx.frame)
        ctx.cur_blocks = blocks
        return blocks
