import logging
from typing import List, Set, Callable, Dict
from dataclasses import dataclass, field
import cv2
import numpy as np
from blockvision.debuggable import Debuggable
from blockvision.frame_ctx import FrameCtx
from blockvision.preproc_step import PreprocStep, PreprocType
from blockvision.temporal_denoiser import TemporalDenoiseStep
from blockvision.type_defs import img_t, img_bgr_t

logger = logging.getLogger(__name__)

# Optional contrib modules (opencv-contrib-python), resolved once at import
XPHOTO_AVAILABLE = hasattr(cv2, "xphoto") and hasattr(cv2.xphoto, "createSimpleWB")
XIMGPROC_AVAILABLE = hasattr(cv2, "ximgproc") and hasattr(cv2.ximgproc, "guidedFilter")


# ------------------- Steps -------------------

class ScaleStep(PreprocStep):
    """Resizes the image by (fx, fy) with the given interpolation."""
    step_type = PreprocType.SCALE

    def __init__(self, fx: float, fy: float, interp: int = cv2.INTER_LINEAR, init_debug: bool = False):
        super().__init__(init_debug)
        self.fx, self.fy, self.interp = fx, fy, interp

    def transform(self, ctx: FrameCtx) -> img_t:
        return cv2.resize(ctx.frame, None, fx=self.fx, fy=self.fy, interpolation=self.interp)


class AutoWhiteBalanceStep(PreprocStep):
    """Automatic white balance.

    Uses cv2.xphoto's simple white balance when `use_xphoto` is set; on any
    failure of that path (or when it is off) a Lab-domain correction is used.
    """
    step_type = PreprocType.AUTO_WB

    def __init__(self, use_xphoto: bool = XPHOTO_AVAILABLE, init_debug: bool = False):
        super().__init__(init_debug)
        self.use_xphoto = use_xphoto

    def transform(self, ctx: FrameCtx) -> img_bgr_t:
        image = ctx.frame
        if self.use_xphoto:
            try:
                return cv2.xphoto.createSimpleWB().balanceWhite(image)
            except (cv2.error, AttributeError) as e:
                logger.warning("xphoto white balance failed (%s), using Lab correction", e)
        return lab_white_balance(image)


def lab_white_balance(image: img_bgr_t) -> img_bgr_t:
    """Shift a/b towards neutral (128), weighted by lightness."""
    lab = cv2.cvtColor(image, cv2.COLOR_BGR2LAB).astype(np.float32)
    avg_a = np.mean(lab[:, :, 1])
    avg_b = np.mean(lab[:, :, 2])
    lightness = lab[:, :, 0] / 255.0
    lab[:, :, 1] -= (avg_a - 128) * lightness
    lab[:, :, 2] -= (avg_b - 128) * lightness
    lab = np.clip(lab, 0, 255).astype(np.uint8)
    return cv2.cvtColor(lab, cv2.COLOR_LAB2BGR)


class BrightnessStep(PreprocStep):
    """Adds a constant offset, saturating."""
    step_type = PreprocType.BRIGHTNESS

    def __init__(self, brightness: int, init_debug: bool = False):
        super().__init__(init_debug)
        self.brightness = brightness

    def transform(self, ctx: FrameCtx) -> img_t:
        return cv2.convertScaleAbs(ctx.frame, alpha=1, beta=self.brightness)


class HistEqualizeStep(PreprocStep):
    """Histogram equalization; on color images only the Y channel of YCrCb."""
    step_type = PreprocType.HIST_EQUALIZE

    def transform(self, ctx: FrameCtx) -> img_t:
        image = ctx.frame
        if len(image.shape) == 2:  # Grayscale
            return cv2.equalizeHist(image)
        ycrcb = cv2.cvtColor(image, cv2.COLOR_BGR2YCrCb)
        ycrcb[:, :, 0] = cv2.equalizeHist(ycrcb[:, :, 0])
        return cv2.cvtColor(ycrcb, cv2.COLOR_YCrCb2BGR)


class ClaheStep(PreprocStep):
    """CLAHE on the L channel of Lab."""
    step_type = PreprocType.CLAHE

    def __init__(self, clip_limit: float = 2.0, grid_size: int = 8, init_debug: bool = False):
        super().__init__(init_debug)
        self.clahe = cv2.createCLAHE(clipLimit=clip_limit, tileGridSize=(grid_size, grid_size))

    def transform(self, ctx: FrameCtx) -> img_t:
        image = ctx.frame
        if len(image.shape) == 2:
            return self.clahe.apply(image)
        lab = cv2.cvtColor(image, cv2.COLOR_BGR2LAB)
        lab[:, :, 0] = self.clahe.apply(lab[:, :, 0])
        return cv2.cvtColor(lab, cv2.COLOR_LAB2BGR)


class GaussianBlurStep(PreprocStep):
    step_type = PreprocType.GAUSSIAN

    def __init__(self, ksize: int = 5, sigma: float = 0, init_debug: bool = False):
        super().__init__(init_debug)
        self.ksize, self.sigma = ksize, sigma

    def transform(self, ctx: FrameCtx) -> img_t:
        return cv2.GaussianBlur(ctx.frame, (self.ksize, self.ksize), self.sigma)


class MedianBlurStep(PreprocStep):
    step_type = PreprocType.MEDIAN

    def __init__(self, ksize: int = 5, init_debug: bool = False):
        super().__init__(init_debug)
        self.ksize = ksize

    def transform(self, ctx: FrameCtx) -> img_t:
        return cv2.medianBlur(ctx.frame, self.ksize)


class BilateralFilterStep(PreprocStep):
    """Edge preserving smoothing."""
    step_type = PreprocType.BILATERAL

    def __init__(self, d: int = 7, sigma_color: float = 70, sigma_space: float = 5, init_debug: bool = False):
        super().__init__(init_debug)
        self.d, self.sigma_color, self.sigma_space = d, sigma_color, sigma_space

    def transform(self, ctx: FrameCtx) -> img_t:
        return cv2.bilateralFilter(ctx.frame, self.d, self.sigma_color, self.sigma_space)


class GuidedFilterStep(PreprocStep):
    """Self-guided filter from cv2.ximgproc; bilateral(7, 75, 5) when unavailable or failing."""
    step_type = PreprocType.GUIDED

    def __init__(self, radius: int = 5, eps: float = 0.1,
                 use_ximgproc: bool = XIMGPROC_AVAILABLE, init_debug: bool = False):
        super().__init__(init_debug)
        self.radius, self.eps = radius, eps
        self.use_ximgproc = use_ximgproc

    def transform(self, ctx: FrameCtx) -> img_t:
        image = ctx.frame
        if self.use_ximgproc:
            try:
                return cv2.ximgproc.guidedFilter(image, image, self.radius, self.eps)
            except (cv2.error, AttributeError) as e:
                logger.warning("Guided filtering failed (%s), using bilateral filter instead", e)
        return cv2.bilateralFilter(image, 7, 75, 5)


class LaplacianStep(PreprocStep):
    """Sharpening by subtracting a weighted |Laplacian|."""
    step_type = PreprocType.LAPLACIAN

    def __init__(self, ksize: int = 7, scale: float = 1, weight: float = 0.01, init_debug: bool = False):
        super().__init__(init_debug)
        self.ksize, self.scale, self.weight = ksize, scale, weight

    def transform(self, ctx: FrameCtx) -> img_t:
        image = ctx.frame
        lap = cv2.Laplacian(image, cv2.CV_64F, ksize=self.ksize, scale=self.scale)
        lap = cv2.convertScaleAbs(lap)  # Convert float64 => uint8
        # addWeighted saturates to uint8
        return cv2.addWeighted(image, 1 + self.weight, lap, -self.weight, 0)


class MorphOpenStep(PreprocStep):
    """Erosion followed by dilation, removes small bright specks."""
    step_type = PreprocType.MORPH_OPEN

    def __init__(self, ksize: int = 5, iterations: int = 1, init_debug: bool = False):
        super().__init__(init_debug)
        self.kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (ksize, ksize))
        self.iterations = iterations

    def transform(self, ctx: FrameCtx) -> img_t:
        return cv2.morphologyEx(ctx.frame, cv2.MORPH_OPEN, self.kernel, iterations=self.iterations)


class MorphCloseStep(PreprocStep):
    """Dilation followed by erosion, closes small holes."""
    step_type = PreprocType.MORPH_CLOSE

    def __init__(self, ksize: int = 5, iterations: int = 1, init_debug: bool = False):
        super().__init__(init_debug)
        self.kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (ksize, ksize))
        self.iterations = iterations

    def transform(self, ctx: FrameCtx) -> img_t:
        return cv2.morphologyEx(ctx.frame, cv2.MORPH_CLOSE, self.kernel, iterations=self.iterations)


class UsmSharpenStep(PreprocStep):
    """
    Unsharp Mask (USM) Sharpening:
        sharpened = (1 + weight) * image - weight * blurred
    """
    step_type = PreprocType.USM

    def __init__(self, ksize: int = 7, sigma: float = 5.0, weight: float = 1.2, init_debug: bool = False):
        super().__init__(init_debug)
        self.ksize, self.sigma, self.weight = ksize, sigma, weight

    def transform(self, ctx: FrameCtx) -> img_t:
        image = ctx.frame
        blurred = cv2.GaussianBlur(image, (self.ksize, self.ksize), self.sigma)
        return cv2.addWeighted(image, 1.0 + self.weight, blurred, -self.weight, 0)


# ------------------- Preprocess Configuration -------------------

# Default steps (you can add or remove from here)
DEF_STEPS = [
    PreprocType.TEMPORAL_DENOISE,
    PreprocType.BILATERAL,
]


@dataclass
class PreprocCfg:
    """Configuration for image preprocessing steps."""
    preprocess_steps: List[PreprocType] = field(
        default_factory=lambda: list(DEF_STEPS))
    # Steps for which debug output is desired
    debug_steps: Set[PreprocType] | bool = field(default_factory=set)

    # Scale
    scale_fx: float = 1.0
    scale_fy: float = 1.0
    scale_interp: int = cv2.INTER_LINEAR

    # Brightness
    brightness: int = 0

    # CLAHE
    CLAHE_clip_limit: float = 2
    CLAHE_grid_size: int = 8

    # Gaussian
    gaussian_kernel_size: int = 5
    gaussian_sigma: float = 0

    # Median
    median_kernel_size: int = 5

    # Bilateral
    bilateral_d: int = 7
    bilateral_sigma_color: float = 70
    bilateral_sigma_space: float = 5

    # Guided
    guided_radius: int = 5
    guided_eps: float = 0.1

    # Laplacian
    laplacian_kernel_size: int = 7
    laplacian_scale: float = 1
    laplacian_weight: float = 0.01

    # Morph
    morph_open_kernel_size: int = 5
    morph_open_iter: int = 1
    morph_close_kernel_size: int = 5
    morph_close_iter: int = 1

    usm_kernel_size: int = 7       # Gaussian kernel size (must be odd)
    usm_sigma: float = 5.0         # Gaussian blur sigma
    usm_weight: float = 1.2        # How strongly we sharpen: typical range 0.5 - 2.0

    # Temporal denoise
    td_alpha: float = 0.8          # weight of the live frame
    td_threshold: float = 30.0     # BGR distance above which blending is rejected


_STEP_FACTORIES: Dict[PreprocType, Callable[[PreprocCfg, bool], PreprocStep]] = {
    PreprocType.SCALE: lambda c, d: ScaleStep(c.scale_fx, c.scale_fy, c.scale_interp, d),
    PreprocType.AUTO_WB: lambda c, d: AutoWhiteBalanceStep(init_debug=d),
    PreprocType.BRIGHTNESS: lambda c, d: BrightnessStep(c.brightness, d),
    PreprocType.HIST_EQUALIZE: lambda c, d: HistEqualizeStep(d),
    PreprocType.CLAHE: lambda c, d: ClaheStep(c.CLAHE_clip_limit, c.CLAHE_grid_size, d),
    PreprocType.GAUSSIAN: lambda c, d: GaussianBlurStep(c.gaussian_kernel_size, c.gaussian_sigma, d),
    PreprocType.MEDIAN: lambda c, d: MedianBlurStep(c.median_kernel_size, d),
    PreprocType.BILATERAL: lambda c, d: BilateralFilterStep(
        c.bilateral_d, c.bilateral_sigma_color, c.bilateral_sigma_space, d),
    PreprocType.GUIDED: lambda c, d: GuidedFilterStep(c.guided_radius, c.guided_eps, init_debug=d),
    PreprocType.LAPLACIAN: lambda c, d: LaplacianStep(
        c.laplacian_kernel_size, c.laplacian_scale, c.laplacian_weight, d),
    PreprocType.MORPH_OPEN: lambda c, d: MorphOpenStep(c.morph_open_kernel_size, c.morph_open_iter, d),
    PreprocType.MORPH_CLOSE: lambda c, d: MorphCloseStep(c.morph_close_kernel_size, c.morph_close_iter, d),
    PreprocType.USM: lambda c, d: UsmSharpenStep(c.usm_kernel_size, c.usm_sigma, c.usm_weight, d),
    PreprocType.TEMPORAL_DENOISE: lambda c, d: TemporalDenoiseStep(c.td_alpha, c.td_threshold, init_debug=d),
}


def build_step(step_type: PreprocType, cfg: PreprocCfg, init_debug: bool = False) -> PreprocStep:
    return _STEP_FACTORIES[step_type](cfg, init_debug)


# ------------------- Pipeline -------------------


class PreprocPipeline:
    """Applies an ordered, mutable sequence of PreprocSteps to a FrameCtx.

    Each step's output replaces the context's current frame before the next
    step runs.
    """

    def __init__(self, *steps: PreprocStep):
        self.steps: List[PreprocStep] = []
        self.dbg = Debuggable("preproc")
        self.dbg.register("original", False)
        for step in steps:
            self.add_step(step)

    @classmethod
    def from_cfg(cls, cfg: PreprocCfg) -> 'PreprocPipeline':
        """Build the steps listed in `cfg.preprocess_steps`, in order."""
        if isinstance(cfg.debug_steps, bool):
            debug_steps = set(cfg.preprocess_steps) if cfg.debug_steps else set()
        else:
            debug_steps = set(cfg.debug_steps)
            for step in debug_steps - set(cfg.preprocess_steps):
                logger.warning(
                    "Debug step '%s' is specified but not included in preprocess_steps.", step.value)
        return cls(*(build_step(t, cfg, t in debug_steps) for t in cfg.preprocess_steps))

    def add_step(self, step: PreprocStep):
        self.steps.append(step)
        self.dbg.add_child(step.dbg)

    def insert_step(self, index: int, step: PreprocStep):
        self.steps.insert(index, step)
        self.dbg.children.insert(index, step.dbg)

    def remove_step(self, step_type: PreprocType) -> List[PreprocStep]:
        """Remove every step of the given type, returning the removed steps."""
        removed = [s for s in self.steps if s.step_type == step_type]
        self.steps = [s for s in self.steps if s.step_type != step_type]
        for step in removed:
            self.dbg.remove_child(step.dbg)
        return removed

    def run(self, ctx: FrameCtx) -> FrameCtx:
        """Processes the context's frame through all steps sequentially."""
        self.dbg.clear()
        if self.dbg.is_enabled("original"):
            self.dbg.add_entry("original", ctx.frame.copy())
        for step in self.steps:
            ctx.replace_frame(step.process(ctx))
        return ctx

    def __len__(self) -> int:
        return len(self.steps)

    def __repr__(self) -> str:
        return f"PreprocPipeline({', '.join(map(repr, self.steps))})"
