import numpy as np
import pytest

from chroma_key_config import PipelineSettings
from chroma_key_core import HUE, KeyRange, solid_background, to_bgr, to_hsv
from chroma_key_pipeline import (
    ExportSample,
    PipelineController,
    PointerDown,
    PointerMove,
    PointerUp,
    Quit,
    ResetRange,
    SelectState,
    Session,
    SliderChanged,
    StepFrame,
    apply_event,
)

W, H = 8, 6


class ListSource:
    def __init__(self, frames):
        self.frames = list(frames)

    def next_frame(self):
        return self.frames.pop(0) if self.frames else None


def frame_of(color):
    frame = np.empty((H, W, 3), dtype=np.uint8)
    frame[:] = color
    return frame


@pytest.fixture
def green():
    return frame_of((0, 255, 0))


@pytest.fixture
def background():
    return solid_background(W, H, (10, 20, 30))


def make_controller(frames, background, **settings):
    return PipelineController(ListSource(frames), background, PipelineSettings(**settings))


def select_all(controller):
    controller.post(PointerDown(0, 0))
    controller.post(PointerUp(W * 2, H * 2))


def test_idle_output_is_foreground(green, background):
    controller = make_controller([green], background)
    out = controller.tick()
    assert controller.state is SelectState.IDLE
    assert np.array_equal(out, to_bgr(to_hsv(green)))
    assert (controller.session.mask == 0).all()


def test_selection_keys_out_patch(green, background):
    controller = make_controller([green], background)
    select_all(controller)
    out = controller.tick()
    assert controller.session.key_range.low == [60, 255, 255]
    assert controller.session.key_range.high == [60, 255, 255]
    assert np.array_equal(out, background)


def test_pointer_move_only_updates_preview(green, background):
    controller = make_controller([green], background)
    controller.post(PointerDown(1, 1))
    controller.post(PointerMove(40, -3))
    controller.tick()
    assert controller.state is SelectState.SELECTING
    assert controller.preview_rect == ((1, 1), (W - 1, 0))
    assert controller.session.key_range == KeyRange.empty()

    shown = controller.display_frame()
    assert not np.array_equal(shown, controller.output)


def test_pointer_events_while_idle_are_ignored(green, background):
    controller = make_controller([green], background)
    controller.post(PointerMove(3, 3))
    controller.post(PointerUp(5, 5))
    controller.tick()
    assert controller.state is SelectState.IDLE
    assert controller.preview_rect is None
    assert controller.session.key_range == KeyRange.empty()


def test_zero_area_drag_leaves_range(green, background):
    controller = make_controller([green], background)
    controller.post(PointerDown(3, 1))
    controller.post(PointerUp(3, 5))
    controller.tick()
    assert controller.state is SelectState.IDLE
    assert controller.session.key_range == KeyRange.empty()


def test_reset_restores_empty_range(green, background):
    controller = make_controller([green], background)
    select_all(controller)
    controller.tick()
    controller.post(ResetRange())
    controller.tick()
    assert controller.session.key_range == KeyRange.empty()
    assert (controller.session.mask == 0).all()
    assert controller.session.frame is not None


def test_hue_slider_widens_selected_range(green, background):
    controller = make_controller([green], background)
    select_all(controller)
    controller.post(SliderChanged("hue", 5))
    controller.tick()
    kr = controller.session.key_range
    assert (kr.low[HUE], kr.high[HUE]) == (55, 65)
    assert controller.session.sliders["hue"].previous == 5


def test_soften_and_spill_sliders(green, background):
    controller = make_controller([green], background)
    controller.post(SliderChanged("soften", 3))
    controller.post(SliderChanged("spill", 40))
    controller.tick()
    assert controller.session.soften_level == 3
    assert controller.session.spill_strength == 40


def test_unknown_slider_is_rejected(green, background):
    session = Session(green, background)
    with pytest.raises(ValueError):
        apply_event(session, SliderChanged("gamma", 2))


def test_step_frame_and_end_of_stream(green, background):
    red = frame_of((0, 0, 255))
    controller = make_controller([green, red], background)
    controller.tick()

    controller.post(StepFrame())
    controller.tick()
    assert np.array_equal(controller.session.frame, red)
    assert not controller.ended

    controller.post(StepFrame())
    out = controller.tick()
    assert controller.ended
    assert np.array_equal(controller.session.frame, red)
    assert np.array_equal(out, to_bgr(to_hsv(red)))


def test_spill_applies_to_stepped_frame(background):
    teal = frame_of((128, 255, 0))
    controller = make_controller([teal], background, spill=50)
    controller.session.key_range.low[:] = [0, 0, 0]
    controller.session.key_range.high[:] = [179, 0, 0]
    controller.tick()
    sat = controller.session.spill_hsv[:, :, 1]
    assert (sat == 205).all()


def test_export_request_is_taken_once(green, background):
    controller = make_controller([green], background)
    controller.post(ExportSample())
    controller.tick()
    assert controller.export_requested
    assert controller.take_export_request()
    assert not controller.take_export_request()


def test_quit_stops_running(green, background):
    controller = make_controller([green], background)
    controller.post(Quit())
    controller.tick()
    assert not controller.running


def test_empty_source_is_rejected(background):
    with pytest.raises(ValueError):
        make_controller([], background)


def test_background_size_must_match(green):
    with pytest.raises(ValueError):
        Session(green, solid_background(W + 1, H, (0, 0, 0)))


def test_export_requests_during_export_are_dropped(green, background):
    controller = make_controller([green], background)
    controller.post(ExportSample())
    controller.tick()
    assert controller.take_export_request()

    # pressed again while the export was running
    controller.post(ExportSample())
    controller.post(SliderChanged("spill", 7))
    controller.finish_export()
    controller.tick()
    assert not controller.export_requested
    assert controller.session.spill_strength == 7


def test_threshold_sliders_start_unapplied(green, background):
    controller = make_controller([green], background, hue_threshold=5)
    assert all(slider.previous == 0 for slider in controller.session.sliders.values())


def test_pointer_down_clamps_to_frame(green, background):
    controller = make_controller([green], background)
    controller.post(PointerDown(-4, H + 10))
    controller.tick()
    assert controller.session.anchor == (0, H - 1)
