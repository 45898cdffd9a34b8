from abc import ABC, abstractmethod
from enum import Enum
from blockvision.debuggable import Debuggable
from blockvision.frame_ctx import FrameCtx
from blockvision.type_defs import img_t

# ------------------- Preprocessing Types Enum -------------------


class PreprocType(Enum):
    """Enumeration of available preprocessing steps."""
    SCALE = "scale"                    # Resize
    AUTO_WB = "auto_wb"                # Auto White Balance
    BRIGHTNESS = "brightness"          # Brightness Adjustment
    HIST_EQUALIZE = "hist_equalize"    # Histogram Equalization
    CLAHE = "clahe"                    # CLAHE
    GAUSSIAN = "gaussian"              # Gaussian Blur
    MEDIAN = "median"                  # Median Blur
    BILATERAL = "bilateral"            # Bilateral Filter
    GUIDED = "guided"                  # Guided Filter
    LAPLACIAN = "laplacian"            # Laplacian Filter
    MORPH_OPEN = "morph_open"          # Morphological Opening
    MORPH_CLOSE = "morph_close"        # Morphological Closing
    USM = "usm"                        # Unsharp Mask Sharpening
    TEMPORAL_DENOISE = "temporal_denoise"  # Motion compensated temporal blending


class PreprocStep(ABC):
    """One stage of a PreprocPipeline: takes the context, returns a new frame.

    The "output" debug option stores a copy of the frame the step produced.
    """
    step_type: PreprocType

    def __init__(self, init_debug: bool = False):
        self.dbg = Debuggable(self.step_type.value)
        self.dbg.register("output", init_debug)

    @property
    def name(self) -> str:
        return self.step_type.value

    def process(self, ctx: FrameCtx) -> img_t:
        self.dbg.clear()
        result = self.transform(ctx)
        if self.dbg.is_enabled("output"):
            self.dbg.add_entry("output", result.copy())
        return result

    @abstractmethod
    def transform(self, ctx: FrameCtx) -> img_t:
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"
