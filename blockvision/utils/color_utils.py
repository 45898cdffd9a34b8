import cv2
import numpy as np
from typing import List, Tuple
from blockvision.color_defs import Color
from blockvision.type_defs import img_hsv_t, img_gray_t, hsv_stats_t


def create_color_mask(frame_hsv: img_hsv_t,
                      colors: List[Color] | Color,
                      dilate_kernel: np.ndarray | None = None,
                      dilate_iter: int = 0) -> img_gray_t:
    """
    Union of every HSV range of every given color, optionally dilated.

    Args:
        frame_hsv: HSV image (OpenCV convention, H in [0, 180)).
        colors: one color or a list of colors.
        dilate_kernel: structuring element, 3x3 rect if None.
        dilate_iter: dilation iterations, <= 0 disables dilation.

    Returns:
        Single channel uint8 mask, 255 where any range matched.
    """
    mask = np.zeros(frame_hsv.shape[:2], dtype=np.uint8)
    if isinstance(colors, Color):
        colors = [colors]
    for color in colors:
        for (lower, upper) in color.hsv_ranges:
            temp_mask = cv2.inRange(
                frame_hsv, np.array(lower, dtype=np.uint8), np.array(upper, dtype=np.uint8))
            mask = cv2.bitwise_or(mask, temp_mask)

    if dilate_iter > 0:
        if dilate_kernel is None:
            dilate_kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (3, 3))
        mask = cv2.dilate(mask, dilate_kernel, iterations=dilate_iter)
    return mask


def std_dev(values: np.ndarray) -> float:
    """Sample standard deviation (n - 1 in the denominator), 0 for fewer than 2 values."""
    values = np.asarray(values, dtype=np.float64)
    if values.size < 2:
        return 0.0
    return float(np.std(values, ddof=1))


def compute_hue_std_flip(h_array: np.ndarray, flip_threshold: float = 90.0) -> float:
    """
    Hue std that is not inflated by samples on both sides of the 0/180 seam.

    Computes the std of the raw samples and of a copy where every sample below
    `flip_threshold` is moved up by 180, and returns the smaller one.
    """
    h_float = np.asarray(h_array, dtype=np.float64)

    # 1) Direct std
    std1 = std_dev(h_float)

    # 2) Flip
    shifted = h_float.copy()
    shifted[shifted < flip_threshold] += 180.0
    std2 = std_dev(shifted)

    return float(min(std1, std2))


def hsv_stats(hsv_roi: img_hsv_t,
              mask: img_gray_t,
              flip_threshold: float = 90.0) -> Tuple[hsv_stats_t, hsv_stats_t] | None:
    """
    Mean and std of H, S, V over the pixels where `mask` is set.
    Returns None when the mask selects nothing.
    """
    selected = mask > 0
    if not np.any(selected):
        return None

    h_valid = hsv_roi[..., 0][selected].astype(np.float32)
    s_valid = hsv_roi[..., 1][selected].astype(np.float32)
    v_valid = hsv_roi[..., 2][selected].astype(np.float32)

    mean = (float(np.mean(h_valid)), float(np.mean(s_valid)), float(np.mean(v_valid)))
    std = (compute_hue_std_flip(h_valid, flip_threshold), std_dev(s_valid), std_dev(v_valid))
    return mean, std
