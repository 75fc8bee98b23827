"""
chroma_key_pipeline.py

Session state and per-frame sequencing for the Chroma Key Compositor

Author: Anelia Gaydardzhieva (https://github.com/anphiriel)
(c) 2025, MIT License

UI callbacks never touch the keying state directly: they post events, and
the PipelineController drains them once per tick before rendering.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Dict, Optional, Tuple, Union

import cv2
import numpy as np

from chroma_key_config import PipelineSettings
from chroma_key_core import (
    CHANNEL_INDEX,
    KeyRange,
    SelectionRegion,
    ThresholdSlider,
    adjust_range,
    clamp_point,
    build_inclusion_mask,
    composite,
    estimate_range,
    is_empty,
    kernel_size,
    soften_mask,
    suppress_spill,
    to_bgr,
    to_hsv,
)

log = logging.getLogger(__name__)

SELECTION_COLOR = (255, 255, 0)


# --------------------------------------------------
# Events
# --------------------------------------------------
@dataclass(frozen=True)
class SliderChanged:
    channel: str  # hue, sat, val, soften or spill
    value: int


@dataclass(frozen=True)
class PointerDown:
    x: int
    y: int


@dataclass(frozen=True)
class PointerMove:
    x: int
    y: int


@dataclass(frozen=True)
class PointerUp:
    x: int
    y: int


@dataclass(frozen=True)
class StepFrame:
    pass


@dataclass(frozen=True)
class ResetRange:
    pass


@dataclass(frozen=True)
class ExportSample:
    pass


@dataclass(frozen=True)
class Quit:
    pass


Event = Union[SliderChanged, PointerDown, PointerMove, PointerUp, StepFrame, ResetRange, ExportSample, Quit]


class SelectState(Enum):
    IDLE = "idle"
    SELECTING = "selecting"


# --------------------------------------------------
# Session
# --------------------------------------------------
@dataclass(eq=False)
class Session:
    """Everything the pipeline keeps between ticks."""
    frame: np.ndarray
    background: np.ndarray
    key_range: KeyRange = field(default_factory=KeyRange.empty)
    sliders: Dict[str, ThresholdSlider] = field(default_factory=dict)
    soften_level: int = 0
    spill_strength: int = 0
    hsv: Optional[np.ndarray] = None
    spill_hsv: Optional[np.ndarray] = None
    mask: Optional[np.ndarray] = None
    alpha_mask: Optional[np.ndarray] = None
    output: Optional[np.ndarray] = None
    state: SelectState = SelectState.IDLE
    anchor: Optional[Tuple[int, int]] = None
    cursor: Optional[Tuple[int, int]] = None
    running: bool = True
    ended: bool = False
    export_requested: bool = False

    def __post_init__(self):
        if is_empty(self.frame):
            raise ValueError("Session needs a non-empty first frame.")
        if self.background.shape[:2] != self.frame.shape[:2]:
            raise ValueError(
                f"Background {self.background.shape} does not match frame {self.frame.shape}."
            )
        self.refresh_hsv()

    @classmethod
    def from_settings(cls, frame: np.ndarray, background: np.ndarray, settings: PipelineSettings) -> "Session":
        sliders = {name: ThresholdSlider(index) for name, index in CHANNEL_INDEX.items()}
        return cls(frame, background, sliders=sliders,
                   soften_level=settings.soften, spill_strength=settings.spill)

    @property
    def width(self) -> int:
        return self.frame.shape[1]

    @property
    def height(self) -> int:
        return self.frame.shape[0]

    def refresh_hsv(self) -> None:
        self.hsv = to_hsv(self.frame)
        self.spill_hsv = self.hsv.copy()


# --------------------------------------------------
# Transitions
# --------------------------------------------------
def on_slider(session: Session, event: SliderChanged) -> Session:
    if event.channel in CHANNEL_INDEX:
        slider = session.sliders.setdefault(event.channel, ThresholdSlider(CHANNEL_INDEX[event.channel]))
        adjust_range(session.key_range, slider, event.value)
        log.debug("%s threshold %d -> range %s", event.channel, event.value, session.key_range.as_tuple())
    elif event.channel == "soften":
        session.soften_level = int(event.value)
    elif event.channel == "spill":
        session.spill_strength = int(event.value)
    else:
        raise ValueError(f"Unknown slider channel '{event.channel}'")
    return session


def on_pointer_down(session: Session, event: PointerDown) -> Session:
    session.state = SelectState.SELECTING
    session.anchor = clamp_point((event.x, event.y), session.width, session.height)
    session.cursor = session.anchor
    return session


def on_pointer_move(session: Session, event: PointerMove) -> Session:
    if session.state is SelectState.SELECTING:
        session.cursor = clamp_point((event.x, event.y), session.width, session.height)
    return session


def on_pointer_up(session: Session, event: PointerUp) -> Session:
    if session.state is not SelectState.SELECTING:
        return session
    region = SelectionRegion.from_corners(session.anchor, (event.x, event.y), session.width, session.height)
    if estimate_range(session.hsv, region, session.key_range):
        log.info("Key range from patch %s: low=%s high=%s", region, session.key_range.low, session.key_range.high)
    session.state = SelectState.IDLE
    session.anchor = session.cursor = None
    return session


def on_reset(session: Session, event: ResetRange) -> Session:
    session.key_range.reset()
    session.refresh_hsv()
    log.info("Key range reset")
    return session


def on_export(session: Session, event: ExportSample) -> Session:
    session.export_requested = True
    return session


def on_quit(session: Session, event: Quit) -> Session:
    session.running = False
    return session


TRANSITIONS = {
    SliderChanged: on_slider,
    PointerDown: on_pointer_down,
    PointerMove: on_pointer_move,
    PointerUp: on_pointer_up,
    ResetRange: on_reset,
    ExportSample: on_export,
    Quit: on_quit,
}


def apply_event(session: Session, event: Event) -> Session:
    """Apply one event to the session. StepFrame needs a source and is handled by the controller."""
    handler = TRANSITIONS.get(type(event))
    if handler is None:
        raise TypeError(f"No transition for event {event!r}")
    return handler(session, event)


# --------------------------------------------------
# Controller
# --------------------------------------------------
class PipelineController:
    """
    Drives one keying session

    The source must offer next_frame() returning a BGR frame or None at the
    end of the stream. The first frame is read on construction.
    """

    def __init__(self, source, background: np.ndarray, settings: Optional[PipelineSettings] = None):
        self.source = source
        self.settings = settings or PipelineSettings()
        frame = source.next_frame()
        if is_empty(frame):
            raise ValueError("Capture source produced no frames.")
        self.session = Session.from_settings(frame, background, self.settings)
        self.events: Deque[Event] = deque()

    # state shortcuts for the UI
    @property
    def state(self) -> SelectState:
        return self.session.state

    @property
    def running(self) -> bool:
        return self.session.running

    @property
    def ended(self) -> bool:
        return self.session.ended

    @property
    def output(self) -> Optional[np.ndarray]:
        return self.session.output

    @property
    def export_requested(self) -> bool:
        return self.session.export_requested

    @property
    def preview_rect(self) -> Optional[Tuple[Tuple[int, int], Tuple[int, int]]]:
        if self.session.state is not SelectState.SELECTING or self.session.anchor is None:
            return None
        return self.session.anchor, self.session.cursor

    def post(self, event: Event) -> None:
        self.events.append(event)

    def take_export_request(self) -> bool:
        requested = self.session.export_requested
        self.session.export_requested = False
        return requested

    def finish_export(self) -> None:
        """Drop export requests that arrived while an export was running."""
        self.events = deque(e for e in self.events if not isinstance(e, ExportSample))
        self.session.export_requested = False

    def step(self) -> bool:
        """Advance to the next source frame. Returns False at end of stream."""
        if self.session.ended:
            return False
        frame = self.source.next_frame()
        if is_empty(frame):
            self.session.ended = True
            log.warning("End of video reached, keeping last frame")
            return False
        self.session.frame = frame
        self.session.refresh_hsv()
        return True

    def drain(self) -> None:
        while self.events:
            event = self.events.popleft()
            if isinstance(event, StepFrame):
                self.step()
            else:
                apply_event(self.session, event)

    def render(self) -> np.ndarray:
        """Mask, spill suppress, soften and composite the current frame."""
        s = self.session
        s.mask = build_inclusion_mask(s.hsv, s.key_range)
        s.spill_hsv = suppress_spill(s.hsv, s.key_range, s.spill_strength)
        s.alpha_mask = soften_mask(s.mask, kernel_size(s.soften_level))
        s.output = composite(to_bgr(s.spill_hsv), s.background, s.alpha_mask)
        return s.output

    def tick(self) -> np.ndarray:
        self.drain()
        if not self.session.running:
            return self.session.output
        return self.render()

    def display_frame(self) -> Optional[np.ndarray]:
        """Latest output with the live selection rectangle drawn on a copy."""
        out = self.session.output
        rect = self.preview_rect
        if out is None or rect is None:
            return out
        out = out.copy()
        cv2.rectangle(out, rect[0], rect[1], SELECTION_COLOR, 2, cv2.LINE_AA)
        return out
