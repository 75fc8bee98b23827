"""
chroma_key_config.py

Defaults, logging and command line setup for the Chroma Key Compositor

Author: Anelia Gaydardzhieva (https://github.com/anphiriel)
(c) 2025, MIT License
"""

import argparse
import logging
from dataclasses import dataclass
from typing import Tuple

DEFAULT_VIDEO = "./greenscreen-demo.mp4"
DEFAULT_BACKGROUND = "./sampleBG1.png"
DEFAULT_EXPORT = "./sampleVideo.avi"
DEFAULT_LOG_LEVEL = "INFO"

EXPORT_FOURCC = "MJPG"
FALLBACK_FPS = 30.0

MAX_THRESHOLD = 40
MAX_SOFTEN = 20
MAX_SPILL = 100

ESCAPE_KEYS = [27]

USAGE_HINTS = (
    "press > to step forward",
    "press r to reset mask",
    "press o to output sample video",
    "press esc to exit",
)


@dataclass(frozen=True)
class PipelineSettings:
    """Initial slider positions and session constants."""
    hue_threshold: int = 1
    sat_threshold: int = 1
    val_threshold: int = 1
    soften: int = 0
    spill: int = 0
    fill_bgr: Tuple[int, int, int] = (0, 0, 0)
    tick_ms: int = 25
    export_path: str = DEFAULT_EXPORT


def parse_color(text: str) -> Tuple[int, int, int]:
    """Parse a 'B,G,R' string into a color tuple."""
    parts = [p.strip() for p in text.split(",")]
    if len(parts) != 3:
        raise argparse.ArgumentTypeError(f"Expected B,G,R, got '{text}'")
    try:
        color = tuple(int(p) for p in parts)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Color components must be integers, got '{text}'")
    if any(c < 0 or c > 255 for c in color):
        raise argparse.ArgumentTypeError(f"Color components must be in 0..255, got '{text}'")
    return color


def build_parser():
    parser = argparse.ArgumentParser(description="Interactive chroma key compositor")
    parser.add_argument(
        "video",
        nargs="?",
        default=None,
        help=f"Foreground video with the color to key out (default {DEFAULT_VIDEO})")
    parser.add_argument(
        "background",
        nargs="?",
        default=None,
        help=f"Background image, resized to the video frame (default {DEFAULT_BACKGROUND})")
    parser.add_argument(
        "--fill",
        type=parse_color,
        default=None,
        help="Use a solid B,G,R background instead of an image")
    parser.add_argument(
        "-o",
        "--output",
        default=DEFAULT_EXPORT,
        help="Where the sample video export is written")
    parser.add_argument(
        "-l",
        "--log-level",
        default=DEFAULT_LOG_LEVEL,
        choices=["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"],
        help="Set the logging level")
    return parser


def parse_args(argv=None):
    return build_parser().parse_args(argv)


def config_log(log_level):
    logging.basicConfig(
        level=log_level,
        format="[%(asctime)s,%(msecs)03d] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S"
    )
    return logging.getLogger(__name__)
