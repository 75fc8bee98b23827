"""
chroma_key_gui.py

Tkinter GUI for the Chroma Key Compositor

Author: Anelia Gaydardzhieva (https://github.com/anphiriel)
(c) 2025, MIT License

GUI layer for the interactive keyer. Sliders, mouse drags and key presses
are turned into pipeline events; the PipelineController in
chroma_key_pipeline does the actual keying once per tick.
"""

import logging
import sys
import tkinter as tk
from tkinter import messagebox
import tkinter.ttk as ttk

import cv2
from PIL import Image, ImageTk

from chroma_key_config import (
    DEFAULT_BACKGROUND,
    DEFAULT_VIDEO,
    ESCAPE_KEYS,
    MAX_SOFTEN,
    MAX_SPILL,
    MAX_THRESHOLD,
    USAGE_HINTS,
    PipelineSettings,
    config_log,
    parse_args,
)
from chroma_key_core import solid_background
from chroma_key_io import SourceError, VideoFileSource, export_sample, load_image
from chroma_key_pipeline import (
    ExportSample,
    PipelineController,
    PointerDown,
    PointerMove,
    PointerUp,
    Quit,
    ResetRange,
    SliderChanged,
    StepFrame,
)

log = logging.getLogger(__name__)


class ToolTip:
    """
    A simple tooltip that appears on widget hover
    """
    def __init__(self, widget, text):
        self.widget = widget
        self.text = text
        self.tip_window = None

        widget.bind("<Enter>", self._show_tooltip)
        widget.bind("<Leave>", self._hide_tooltip)

    def _show_tooltip(self, event=None):
        if self.tip_window or not self.text:
            return
        x = self.widget.winfo_rootx() + 40
        y = self.widget.winfo_rooty() + 20
        self.tip_window = tw = tk.Toplevel(self.widget)
        tw.wm_overrideredirect(True)
        tw.geometry(f"+{x}+{y}")
        label = ttk.Label(tw, text=self.text, borderwidth=1, relief="solid")
        # dark background + light text
        label.configure(background="#333333", foreground="#ffffff")
        label.pack(ipadx=5, ipady=2)

    def _hide_tooltip(self, event=None):
        if self.tip_window:
            self.tip_window.destroy()
        self.tip_window = None


class ChromaKeyApp:
    """
    Tkinter front end: the UI input source and live display for one keying session
    """

    def __init__(self, source, controller, settings):
        self.source = source
        self.controller = controller
        self.settings = settings

        self.root = tk.Tk()
        self.root.title("Chroma Key Compositor")
        self.root.geometry("1050x600")

        # preview placement, used to map mouse positions back to frame pixels
        self.view_scale = 1.0
        self.view_offset = (0, 0)

        self.playing = tk.BooleanVar(value=False)
        self.exporting = False
        self.stop_export = False

        self._setup_ui()
        self._bind_keys()
        self.root.protocol("WM_DELETE_WINDOW", lambda: self.controller.post(Quit()))

    def run(self):
        self.root.after(self.settings.tick_ms, self._tick)
        self.root.mainloop()

    # --------------------------------------------------
    # Setup UI
    # --------------------------------------------------
    def _setup_ui(self):
        style = ttk.Style(self.root)
        style.theme_use("clam")

        # styles
        style.configure("TFrame", background="#404040")
        style.configure("TLabel", background="#404040", foreground="#ffffff")
        style.configure("TLabelframe", background="#404040", foreground="#cccccc", borderwidth=1, relief="solid")
        style.configure("TLabelframe.Label", background="#404040", foreground="#cccccc")
        style.configure("TCheckbutton", background="#404040", foreground="#cccccc")
        style.map("TCheckbutton", background=[("active", "#666666"), ("pressed", "#666666")])
        style.configure("TButton", background="#777777", foreground="#ffffff", borderwidth=1, relief="solid")
        style.map("TButton", background=[("active", "#666666"), ("pressed", "#666666")])
        style.configure("Horizontal.TScale", troughcolor="#333333")
        style.configure("TinyInfo.TLabel", font=("Helvetica", 11, "bold"), foreground="#999999", padding=1)

        main_frame = ttk.Frame(self.root, padding=5)
        main_frame.pack(fill="both", expand=True)

        left_panel = ttk.Frame(main_frame)
        left_panel.pack(side="left", fill="y")

        right_panel = ttk.Frame(main_frame)
        right_panel.pack(side="right", fill="both", expand=True)

        # key range sliders
        key_frame = ttk.Labelframe(left_panel, text="Key Range")
        key_frame.pack(side="top", fill="x", padx=10, pady=10)
        self.create_slider_with_info(key_frame, "Hue", "hue", self.settings.hue_threshold, 0, MAX_THRESHOLD, "Widen the keyed hue range; moving back narrows it from below")
        self.create_slider_with_info(key_frame, "Saturation", "sat", self.settings.sat_threshold, 0, MAX_THRESHOLD, "Widen the keyed saturation range; moving back narrows it from below")
        self.create_slider_with_info(key_frame, "Value", "val", self.settings.val_threshold, 0, MAX_THRESHOLD, "Widen the keyed brightness range; moving back narrows it from below")

        # mask and spill sliders
        mask_frame = ttk.Labelframe(left_panel, text="Mask")
        mask_frame.pack(side="top", fill="x", padx=10, pady=10)
        self.create_slider_with_info(mask_frame, "Soften", "soften", self.settings.soften, 0, MAX_SOFTEN, "Blur the key mask to soften the edge between foreground and background")
        self.create_slider_with_info(mask_frame, "Spill", "spill", self.settings.spill, 0, MAX_SPILL, "Desaturate foreground pixels that carry the keyed hue")

        # session actions
        actions_frame = ttk.Labelframe(left_panel, text="Session")
        actions_frame.pack(side="top", fill="x", padx=10, pady=10)
        self.create_button_with_info(actions_frame, "Step Frame  >", lambda: self.controller.post(StepFrame()), row=0, tooltip_text="Advance the foreground video by one frame")
        self.create_button_with_info(actions_frame, "Reset Key  r", lambda: self.controller.post(ResetRange()), row=1, tooltip_text="Forget the sampled key range and start a new selection")
        self.create_button_with_info(actions_frame, "Export Sample  o", lambda: self.controller.post(ExportSample()), row=2, tooltip_text=f"Write the whole video keyed with the current settings to {self.settings.export_path}")
        play_check = ttk.Checkbutton(actions_frame, text="Play", variable=self.playing)
        play_check.grid(row=3, column=0, pady=5, sticky="w", padx=(5, 0))
        play_info = ttk.Label(actions_frame, text="?", style="TinyInfo.TLabel")
        play_info.grid(row=3, column=1, sticky="w", padx=5)
        ToolTip(play_info, "Step forward every tick instead of waiting for >")

        # right side: video preview
        video_frame = ttk.Frame(right_panel)
        video_frame.pack(side="top", fill="both", expand=True, padx=20, pady=15)

        self.video_label = ttk.Label(video_frame, text="Drag over the key color to sample it", anchor="center", background="#000000", foreground="#ffffff")
        self.video_label.pack(fill="both", expand=True)
        self.video_label.bind("<ButtonPress-1>", lambda e: self.controller.post(PointerDown(*self.to_frame_coords(e.x, e.y))))
        self.video_label.bind("<B1-Motion>", lambda e: self.controller.post(PointerMove(*self.to_frame_coords(e.x, e.y))))
        self.video_label.bind("<ButtonRelease-1>", lambda e: self.controller.post(PointerUp(*self.to_frame_coords(e.x, e.y))))

        self.status_label = ttk.Label(right_panel, text="  |  ".join(USAGE_HINTS), style="TinyInfo.TLabel")
        self.status_label.pack(side="bottom", fill="x", padx=20, pady=(0, 10))

    def _bind_keys(self):
        self.root.bind("<greater>", lambda e: self.controller.post(StepFrame()))
        self.root.bind("r", lambda e: self.controller.post(ResetRange()))
        self.root.bind("o", lambda e: self.controller.post(ExportSample()))
        self.root.bind("<Key>", self._on_key)

    def _on_key(self, event):
        if event.char and ord(event.char[0]) in ESCAPE_KEYS:
            if self.exporting:
                self.stop_export = True
            else:
                self.controller.post(Quit())

    # ----------------------------------------------------------------------
    # Element builders - buttons and sliders
    # ----------------------------------------------------------------------
    def create_button_with_info(self, parent, text, command, row=0, col=0, tooltip_text=""):
        btn = ttk.Button(parent, text=text, command=command)
        btn.grid(row=row, column=col, pady=(5, 5), padx=(5, 0), sticky="ew")

        info_lbl = ttk.Label(parent, text="?", style="TinyInfo.TLabel")
        info_lbl.grid(row=row, column=col+1, sticky="w", padx=5)
        ToolTip(info_lbl, tooltip_text)

    def create_slider_with_info(self, parent, label_text, channel, default_value, min_val, max_val, tooltip_text):
        row_frame = ttk.Frame(parent)
        row_frame.pack(fill="x", pady=5)

        row_frame.columnconfigure(0, minsize=85)
        row_frame.columnconfigure(1, weight=1)
        row_frame.columnconfigure(2, minsize=37)
        row_frame.columnconfigure(3, minsize=10)

        lbl = ttk.Label(row_frame, text=label_text)
        lbl.grid(row=0, column=0, padx=(5, 5), sticky="w")

        value_lbl = ttk.Label(row_frame, text=str(default_value))
        value_lbl.grid(row=0, column=2, padx=(5, 5), sticky="w")

        # ttk.Scale reports floats on every pixel of travel; only whole steps become events
        last = {"value": int(default_value)}

        def slider_callback(val):
            value = int(float(val))
            if value == last["value"]:
                return
            last["value"] = value
            value_lbl.config(text=str(value))
            self.controller.post(SliderChanged(channel, value))

        scale = ttk.Scale(row_frame, from_=min_val, to=max_val, orient="horizontal", length=180)
        scale.set(default_value)
        scale.configure(command=slider_callback)
        scale.grid(row=0, column=1, sticky="e", padx=(0, 5))

        info_lbl = ttk.Label(row_frame, text="?", style="TinyInfo.TLabel")
        info_lbl.grid(row=0, column=3, sticky="w", padx=(0, 5))
        ToolTip(info_lbl, tooltip_text)

    # -------------------------------------------------
    # Main loop
    # -------------------------------------------------
    def _tick(self):
        if self.playing.get() and not self.controller.ended:
            self.controller.post(StepFrame())

        self.controller.tick()
        if not self.controller.running:
            self.root.destroy()
            return

        if self.controller.take_export_request():
            self.export_sample()

        frame = self.controller.display_frame()
        if frame is not None:
            self.display_frame(frame)
        self.root.after(self.settings.tick_ms, self._tick)

    def to_frame_coords(self, x, y):
        ox, oy = self.view_offset
        return int((x - ox) / self.view_scale), int((y - oy) / self.view_scale)

    def display_frame(self, frame):
        w = self.video_label.winfo_width()
        h = self.video_label.winfo_height()
        if w < 2 or h < 2:
            return

        fh, fw = frame.shape[:2]
        scale = min(w / fw, h / fh)
        nw = int(fw * scale)
        nh = int(fh * scale)
        self.view_scale = scale
        self.view_offset = ((w - nw) // 2, (h - nh) // 2)

        resized = cv2.resize(frame, (nw, nh))
        rgb = cv2.cvtColor(resized, cv2.COLOR_BGR2RGB)
        img = ImageTk.PhotoImage(Image.fromarray(rgb))
        self.video_label.config(image=img, text="")
        self.video_label.image = img

    # -------------------------------------------------
    # Export
    # -------------------------------------------------
    def export_sample(self):
        session = self.controller.session
        self.exporting = True
        self.stop_export = False
        self.status_label.config(text="Writing sample video... press esc to stop")

        def show_progress(frame):
            self.display_frame(frame)
            self.root.update()
            return self.stop_export

        try:
            frame_count = export_sample(
                self.source,
                self.settings.export_path,
                session.key_range,
                session.background,
                session.soften_level,
                session.spill_strength,
                should_stop=show_progress,
            )
        except SourceError as exc:
            log.error("%s", exc)
            messagebox.showerror("Error", str(exc))
        else:
            messagebox.showinfo("Success", f"Video saved to {self.settings.export_path}.\nFrames: {frame_count}")
        finally:
            self.exporting = False
            self.controller.finish_export()
            self.status_label.config(text="  |  ".join(USAGE_HINTS))


# -----------------------------
# Main
# -----------------------------
def _report_fatal(message):
    log.error(message)
    try:
        root = tk.Tk()
    except tk.TclError:
        return
    root.withdraw()
    messagebox.showerror("Error", message)
    root.destroy()


def main(argv=None):
    args = parse_args(argv)
    config_log(args.log_level)

    video_path = args.video
    background_path = args.background
    if video_path is None:
        log.info("Usage: chroma-key video_path background_path")
        log.info("Loading default video %s", DEFAULT_VIDEO)
        video_path = DEFAULT_VIDEO
    if background_path is None and args.fill is None:
        background_path = DEFAULT_BACKGROUND

    settings = PipelineSettings(export_path=args.output, fill_bgr=args.fill or (0, 0, 0))

    try:
        source = VideoFileSource(video_path)
        first = source.next_frame()
        if first is None:
            raise SourceError(f"Video has no frames: {video_path}")
        height, width = first.shape[:2]
        if args.fill is not None:
            background = solid_background(width, height, settings.fill_bgr)
        else:
            background = load_image(background_path, width, height)
    except SourceError as exc:
        _report_fatal(str(exc))
        return 1

    source.rewind()
    controller = PipelineController(source, background, settings)
    for hint in USAGE_HINTS:
        log.info(hint)

    try:
        app = ChromaKeyApp(source, controller, settings)
        app.run()
    finally:
        source.release()
    return 0


if __name__ == "__main__":
    sys.exit(main())
