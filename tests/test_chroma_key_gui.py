import numpy as np
import pytest

pytest.importorskip("tkinter")

import chroma_key_gui


class FakeVideo:
    instances = []

    def __init__(self, path):
        self.path = path
        self.index = 0
        self.released = False
        FakeVideo.instances.append(self)

    def next_frame(self):
        if self.index >= 2:
            return None
        self.index += 1
        return np.zeros((4, 6, 3), dtype=np.uint8)

    def rewind(self):
        self.index = 0

    def release(self):
        self.released = True


class CrashingApp:
    def __init__(self, source, controller, settings):
        self.controller = controller

    def run(self):
        raise RuntimeError("window closed unexpectedly")


def test_main_releases_video_when_app_fails(monkeypatch):
    FakeVideo.instances.clear()
    monkeypatch.setattr(chroma_key_gui, "VideoFileSource", FakeVideo)
    monkeypatch.setattr(chroma_key_gui, "ChromaKeyApp", CrashingApp)

    with pytest.raises(RuntimeError):
        chroma_key_gui.main(["clip.mp4", "--fill", "0,0,255"])

    assert len(FakeVideo.instances) == 1
    assert FakeVideo.instances[0].released


def test_main_reports_missing_video(monkeypatch):
    messages = []
    monkeypatch.setattr(chroma_key_gui, "_report_fatal", messages.append)
    assert chroma_key_gui.main(["does-not-exist.mp4", "--fill", "0,0,0"]) == 1
    assert "does-not-exist.mp4" in messages[0]
