"""
chroma_key_io.py

Video and image input/output for the Chroma Key Compositor

Author: Anelia Gaydardzhieva (https://github.com/anphiriel)
(c) 2025, MIT License

Wraps cv2.VideoCapture / cv2.VideoWriter / cv2.imread behind the small
source and sink interfaces the pipeline controller works with.
"""

import logging
from typing import Callable, Optional, Tuple

import cv2
import numpy as np

from chroma_key_config import EXPORT_FOURCC, FALLBACK_FPS
from chroma_key_core import KeyRange, fit_background, key_frame

log = logging.getLogger(__name__)


class SourceError(RuntimeError):
    """A video or image could not be opened or decoded."""


class VideoFileSource:
    """Capture source reading frames from a video file."""

    def __init__(self, path: str):
        self.path = path
        self.cap = cv2.VideoCapture(path)
        if not self.cap.isOpened():
            self.cap.release()
            raise SourceError(f"Couldn't open video file: {path}")

    def next_frame(self) -> Optional[np.ndarray]:
        """Next frame, or None once the stream is exhausted."""
        ret, frame = self.cap.read()
        if not ret or frame is None:
            return None
        return frame

    def rewind(self) -> None:
        self.cap.set(cv2.CAP_PROP_POS_FRAMES, 0)

    @property
    def fps(self) -> float:
        fps = self.cap.get(cv2.CAP_PROP_FPS)
        return fps if fps > 0 else FALLBACK_FPS

    @property
    def frame_size(self) -> Tuple[int, int]:
        return int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH)), int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT))

    def reopen(self) -> "VideoFileSource":
        return VideoFileSource(self.path)

    def release(self) -> None:
        self.cap.release()


class VideoFileSink:
    """Writes composited frames to a video file."""

    def __init__(self, path: str, fps: float, frame_size: Tuple[int, int], fourcc: str = EXPORT_FOURCC):
        self.path = path
        self.writer = cv2.VideoWriter(path, cv2.VideoWriter_fourcc(*fourcc), fps, frame_size)
        if not self.writer.isOpened():
            raise SourceError(f"Couldn't open video writer: {path}")

    def write_frame(self, frame: np.ndarray) -> None:
        self.writer.write(frame)

    def release(self) -> None:
        self.writer.release()


def load_image(path: str, width: int, height: int) -> np.ndarray:
    """Read a still image and resize it to the foreground frame size."""
    img = cv2.imread(path)
    if img is None:
        raise SourceError(f"Failed to load image: {path}")
    return fit_background(img, width, height)


def export_video(
    source,
    sink,
    key_range: KeyRange,
    background: np.ndarray,
    soften_level: int,
    spill_strength: int,
    should_stop: Optional[Callable[[np.ndarray], bool]] = None,
) -> int:
    """
    Key every remaining frame of source and write it to sink

    Uses its own copy of the key range so a live session is left as it was.
    should_stop is called with each written frame and ends the export early
    when it returns True. Returns the number of frames written.
    """
    key_range = KeyRange(list(key_range.low), list(key_range.high))
    frame_count = 0
    while True:
        frame = source.next_frame()
        if frame is None:
            break
        out = key_frame(frame, key_range, background, soften_level, spill_strength)
        sink.write_frame(out)
        frame_count += 1
        if should_stop is not None and should_stop(out):
            log.info("Sample export interrupted after %d frames", frame_count)
            break
    return frame_count


def export_sample(source: VideoFileSource, out_path: str, key_range: KeyRange, background: np.ndarray,
                  soften_level: int, spill_strength: int, should_stop=None) -> int:
    """Re-read the source video from the start and write a keyed copy to out_path."""
    export_source = source.reopen()
    sink = None
    try:
        sink = VideoFileSink(out_path, export_source.fps, export_source.frame_size)
        log.info("Writing sample video to %s", out_path)
        frame_count = export_video(export_source, sink, key_range, background,
                                   soften_level, spill_strength, should_stop)
    finally:
        if sink is not None:
            sink.release()
        export_source.release()
    log.info("Done writing sample video (%d frames)", frame_count)
    return frame_count
