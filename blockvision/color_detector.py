import logging
import cv2
import numpy as np
from dataclasses import dataclass
from enum import Enum
from typing import List
from blockvision.block import Block
from blockvision.color_defs import Color
from blockvision.debuggable import Debuggable
from blockvision.detector import Detector
from blockvision.type_defs import img_bgr_t, img_hsv_t, hsv_stats_t
from blockvision.utils.color_utils import create_color_mask, hsv_stats

logger = logging.getLogger(__name__)


class DebugType(Enum):
    SINGLE_COLOR_MASK = "color_mask"
    COMBINED_MASK = "combined_color_mask"


@dataclass
class DetectorCfg:
    min_contour_area: float = 500.0
    # Thresholds for std(H, S, V)
    std_threshold_hsv: hsv_stats_t = (40.0, 50.0, 50.0)
    mask_dilate_kernel_size: int = 7
    mask_dilate_iter: int = 2
    hue_flip_threshold: float = 90.0

    def dilate_kernel(self) -> np.ndarray:
        k = self.mask_dilate_kernel_size
        return cv2.getStructuringElement(cv2.MORPH_ELLIPSE, (k, k))


def detect_blocks(frame: img_bgr_t,
                  detecting_colors: List[Color],
                  cfg: DetectorCfg,
                  dbg: Debuggable | None = None) -> List[Block]:
    """
    Detects color blocks by:
      1) Converting to HSV
      2) Creating a dilated mask per color (union of its HSV ranges)
      3) Finding external contours above the minimum area
      4) Keeping a contour only if std(H, S, V) inside it is within thresholds
    Output order follows the color list, then contour order.
    """
    hsv = cv2.cvtColor(frame, cv2.COLOR_BGR2HSV)
    kernel = cfg.dilate_kernel()
    blocks: List[Block] = []
    combined_mask = None
    want_combined = dbg is not None and dbg.is_enabled(DebugType.COMBINED_MASK)
    if want_combined:
        combined_mask = np.zeros(hsv.shape[:2], dtype=np.uint8)

    for color_def in detecting_colors:
        mask = create_color_mask(hsv, color_def, kernel, cfg.mask_dilate_iter)

        if dbg is not None:
            key = f"{DebugType.SINGLE_COLOR_MASK.value}_{color_def.name}"
            if dbg.is_enabled(key):
                mask_bgr = cv2.cvtColor(mask, cv2.COLOR_GRAY2BGR)
                mask_bgr[mask > 0] = color_def.bgr
                dbg.add_entry(key, mask_bgr)
        if combined_mask is not None:
            combined_mask = cv2.bitwise_or(combined_mask, mask)

        contours = _find_contours(mask, cfg.min_contour_area)
        blocks.extend(_process_contours(contours, color_def, hsv, cfg))

    if want_combined:
        dbg.add_entry(DebugType.COMBINED_MASK, cv2.cvtColor(combined_mask, cv2.COLOR_GRAY2BGR))

    logger.debug("detected %d blocks", len(blocks))
    return blocks


def _find_contours(mask: np.ndarray, min_area: float) -> List[np.ndarray]:
    """Find external contours with area > min_area."""
    contours, _ = cv2.findContours(
        mask, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
    return [c for c in contours if cv2.contourArea(c) > min_area]


def _process_contours(contours: List[np.ndarray],
                      color_def: Color,
                      hsv: img_hsv_t,
                      cfg: DetectorCfg) -> List[Block]:
    """Compute mean & std(H, S, V) inside each contour and filter by thresholds."""
    blocks = []
    max_h, max_s, max_v = cfg.std_threshold_hsv
    for cnt in contours:
        (cx, cy), (w, h), angle = cv2.minAreaRect(cnt)

        # Normalize orientation
        if w < h:
            w, h = h, w
            angle += 90

        # Get bounding rect (for ROI)
        x_min, y_min, w_int, h_int = cv2.boundingRect(cnt)
        if w_int == 0 or h_int == 0 or w == 0 or h == 0:
            continue

        # Interior mask of the contour, local to the bounding box
        contour_mask = np.zeros((h_int, w_int), dtype=np.uint8)
        shifted_cnt = (cnt - [x_min, y_min]).astype(np.int32)
        cv2.drawContours(contour_mask, [shifted_cnt], 0, (255,), -1)

        hsv_roi = hsv[y_min:y_min + h_int, x_min:x_min + w_int]
        stats = hsv_stats(hsv_roi, contour_mask, cfg.hue_flip_threshold)
        if stats is None:
            continue
        mean_hsv, color_std = stats

        std_h, std_s, std_v = color_std
        if std_h <= max_h and std_s <= max_s and std_v <= max_v:
            blocks.append(Block(
                center=(float(cx), float(cy)),
                size=(float(w), float(h)),
                angle=float(angle),
                color=color_def,
                color_std=color_std,
                mean_hsv=mean_hsv,
                # store the original contour (absolute coordinates)
                contour=cnt
            ))
    return blocks


class ColorDetector(Detector):
    """
    Statistical color segmentation detector.

    Debug options: "color_mask_<color name>" per color, "combined_color_mask".
    """

    def __init__(self, detecting_colors: List[Color],
                 cfg: DetectorCfg | None = None,
                 debug_option: List[str] | bool = False):
        super().__init__(detecting_colors, name="color_detector")
        self.cfg = cfg or DetectorCfg()
        for color in self.detecting_colors:
            self.dbg.register(f"{DebugType.SINGLE_COLOR_MASK.value}_{color.name}")
        self.dbg.register(DebugType.COMBINED_MASK)
        if isinstance(debug_option, bool):
            self.dbg.set_all(debug_option)
        else:
            self.dbg.set_options(debug_option, True)

    def detect(self, frame: img_bgr_t) -> List[Block]:
        """Assumes the frame has been preprocessed already."""
        self.dbg.clear()
        return detect_blocks(frame, self.detecting_colors, self.cfg, self.dbg)
