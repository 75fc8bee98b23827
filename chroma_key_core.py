"""
chroma_key_core.py

Core logic for chroma key compositing

Author: Anelia Gaydardzhieva (https://github.com/anphiriel)
(c) 2025, MIT License

This module provides the keying routines used by the pipeline controller:
color range selection from a sampled patch, slider driven range widening,
mask building and softening, spill suppression and alpha compositing.
Nothing in here touches windows, files or capture devices.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import cv2
import numpy as np

U8 = np.uint8

HUE, SAT, VAL = 0, 1, 2
CHANNEL_INDEX = {"hue": HUE, "sat": SAT, "val": VAL}

# OpenCV half-angle hue: the key range may reach 180 even though pixels stop at 179
CHANNEL_FLOOR = (0, 0, 0)
CHANNEL_CEILING = (180, 255, 255)


# --------------------------------------------------
# Color space conversion
# --------------------------------------------------
def is_empty(frame: Optional[np.ndarray]) -> bool:
    return frame is None or frame.size == 0


def to_hsv(frame: Optional[np.ndarray]) -> np.ndarray:
    """Convert a BGR frame to HSV. An empty frame gives an empty result."""
    if is_empty(frame):
        return np.empty((0, 0, 3), dtype=U8)
    return cv2.cvtColor(frame, cv2.COLOR_BGR2HSV)


def to_bgr(hsv_frame: Optional[np.ndarray]) -> np.ndarray:
    """Convert an HSV frame back to BGR. An empty frame gives an empty result."""
    if is_empty(hsv_frame):
        return np.empty((0, 0, 3), dtype=U8)
    return cv2.cvtColor(hsv_frame, cv2.COLOR_HSV2BGR)


# --------------------------------------------------
# Key range and selection
# --------------------------------------------------
@dataclass
class KeyRange:
    """
    Low/high HSV bounds of the keyed color

    Starts degenerate (low at the channel maxima, high at zero) so that it
    selects nothing until a patch is sampled.
    """
    low: List[int] = field(default_factory=lambda: list(CHANNEL_CEILING))
    high: List[int] = field(default_factory=lambda: list(CHANNEL_FLOOR))

    @classmethod
    def empty(cls) -> "KeyRange":
        return cls()

    def reset(self) -> None:
        self.low[:] = CHANNEL_CEILING
        self.high[:] = CHANNEL_FLOOR

    def as_tuple(self) -> Tuple[Tuple[int, ...], Tuple[int, ...]]:
        return tuple(self.low), tuple(self.high)


@dataclass(frozen=True)
class SelectionRegion:
    """Rectangle between two corners, normalized so (x0, y0) is the top left."""
    x0: int
    y0: int
    x1: int
    y1: int

    @classmethod
    def from_corners(cls, p1: Tuple[int, int], p2: Tuple[int, int], width: int, height: int) -> "SelectionRegion":
        """
        Build a region from two drag corners, clamping both to the frame

        Corners are clamped to [0, width-1] x [0, height-1]; the far edge is
        exclusive, the way a cv::Rect built from two points behaves.
        """
        (ax, ay), (bx, by) = clamp_point(p1, width, height), clamp_point(p2, width, height)
        x0, x1 = sorted((ax, bx))
        y0, y1 = sorted((ay, by))
        return cls(x0, y0, x1, y1)

    @property
    def width(self) -> int:
        return self.x1 - self.x0

    @property
    def height(self) -> int:
        return self.y1 - self.y0

    @property
    def area(self) -> int:
        return max(0, self.width) * max(0, self.height)


def clamp_point(point: Tuple[int, int], width: int, height: int) -> Tuple[int, int]:
    x, y = int(point[0]), int(point[1])
    x = min(max(x, 0), max(width - 1, 0))
    y = min(max(y, 0), max(height - 1, 0))
    return x, y


def estimate_range(hsv_frame: np.ndarray, region: SelectionRegion, key_range: KeyRange) -> bool:
    """
    Widen key_range so it covers every pixel inside the region

    Selections accumulate: each channel's low only moves down and high only
    moves up. Returns False (range untouched) for an empty frame or a
    zero-area region.
    """
    if is_empty(hsv_frame) or region.area == 0:
        return False

    patch = hsv_frame[region.y0:region.y1, region.x0:region.x1].reshape(-1, 3)
    if patch.size == 0:
        return False

    patch_low = patch.min(axis=0)
    patch_high = patch.max(axis=0)
    for c in range(3):
        key_range.low[c] = min(key_range.low[c], int(patch_low[c]))
        key_range.high[c] = max(key_range.high[c], int(patch_high[c]))
    return True


# --------------------------------------------------
# Threshold sliders
# --------------------------------------------------
@dataclass
class ThresholdSlider:
    """A hue/sat/val threshold slider; previous is the value it last applied."""
    channel: int
    previous: int = 0


def adjust_range(key_range: KeyRange, slider: ThresholdSlider, current: int) -> None:
    """
    Expand or contract one channel of the key range for a new slider value

    Moving the slider up widens both bounds by the distance travelled,
    clamped to the channel floor/ceiling. Moving it down raises low by the
    new slider value without re-clamping, and leaves high alone.
    """
    c = slider.channel
    current = int(current)
    if current > slider.previous:
        step = current - slider.previous
        key_range.low[c] = max(key_range.low[c] - step, CHANNEL_FLOOR[c])
        key_range.high[c] = min(key_range.high[c] + step, CHANNEL_CEILING[c])
    elif current < slider.previous:
        key_range.low[c] = key_range.low[c] + current

    slider.previous = current


# --------------------------------------------------
# Mask building
# --------------------------------------------------
def build_inclusion_mask(hsv_frame: np.ndarray, key_range: KeyRange) -> np.ndarray:
    """255 where every channel lies inside [low, high], else 0."""
    if is_empty(hsv_frame):
        return np.empty((0, 0), dtype=U8)
    low = np.array(key_range.low, dtype=np.int32)
    high = np.array(key_range.high, dtype=np.int32)
    pixels = hsv_frame.astype(np.int32)
    inside = np.all((pixels >= low) & (pixels <= high), axis=2)
    return inside.astype(U8) * 255


def kernel_size(soften_level: int) -> int:
    return 2 * int(soften_level) + 1


def soften_mask(mask: np.ndarray, ksize: int) -> np.ndarray:
    """Gaussian blur of the mask with an odd square kernel; size 1 is identity."""
    if ksize % 2 == 0 or ksize < 1:
        raise ValueError(f"Blur kernel size must be a positive odd number, got {ksize}.")
    if ksize == 1 or is_empty(mask):
        return mask.copy()
    return cv2.GaussianBlur(mask, (ksize, ksize), 0)


# --------------------------------------------------
# Spill suppression
# --------------------------------------------------
def suppress_spill(hsv_frame: np.ndarray, key_range: KeyRange, strength: int) -> np.ndarray:
    """
    Desaturate pixels whose hue falls strictly inside the key hue bounds

    Only hue gates the change. A pixel whose saturation would not stay above
    zero keeps its saturation instead of being clamped.
    """
    out = hsv_frame.copy()
    if is_empty(hsv_frame) or strength <= 0:
        return out

    hue = hsv_frame[:, :, HUE].astype(np.int32)
    sat = hsv_frame[:, :, SAT].astype(np.int32)
    reduced = sat - int(strength)
    spill = (hue > key_range.low[HUE]) & (hue < key_range.high[HUE]) & (reduced > 0)
    out[:, :, SAT][spill] = reduced[spill].astype(U8)
    return out


# --------------------------------------------------
# Compositing
# --------------------------------------------------
def composite(foreground: np.ndarray, background: np.ndarray, mask: np.ndarray) -> np.ndarray:
    """
    Alpha blend background over foreground using the mask as weight

    :param foreground:  spill suppressed frame (BGR)
    :param background:  background frame, same size as foreground
    :param mask:        single channel mask, 255 selects the background
    :return:            blended frame, rounded and saturated to uint8
    """
    if foreground.shape[:2] != background.shape[:2] or foreground.shape[:2] != mask.shape[:2]:
        raise ValueError(
            f"Frame {foreground.shape}, background {background.shape} and mask {mask.shape} sizes differ."
        )
    alpha = mask.astype(np.float32) / 255.0
    alpha_3 = cv2.merge([alpha, alpha, alpha])
    combined = alpha_3 * background.astype(np.float32) + (1.0 - alpha_3) * foreground.astype(np.float32)
    return np.clip(np.rint(combined), 0, 255).astype(U8)


# --------------------------------------------------
# Backgrounds
# --------------------------------------------------
def solid_background(width: int, height: int, color_bgr: Tuple[int, int, int]) -> np.ndarray:
    background = np.empty((height, width, 3), dtype=U8)
    background[:] = color_bgr
    return background


def fit_background(image: np.ndarray, width: int, height: int) -> np.ndarray:
    if image.shape[:2] == (height, width):
        return image
    return cv2.resize(image, (width, height))


# --------------------------------------------------
# One-shot pipeline
# --------------------------------------------------
def key_frame(
    frame: np.ndarray,
    key_range: KeyRange,
    background: np.ndarray,
    soften_level: int = 0,
    spill_strength: int = 0,
    hsv_frame: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Run inclusion mask, spill suppression, softening and compositing on a frame

    hsv_frame may be passed in when the caller already holds the converted
    frame. Empty input is returned as an empty frame.
    """
    if is_empty(frame):
        return np.empty((0, 0, 3), dtype=U8)
    if hsv_frame is None:
        hsv_frame = to_hsv(frame)

    mask = build_inclusion_mask(hsv_frame, key_range)
    foreground = to_bgr(suppress_spill(hsv_frame, key_range, spill_strength))
    alpha_mask = soften_mask(mask, kernel_size(soften_level))
    return composite(foreground, background, alpha_mask)
