"""Renderer: all PsychoPy drawing for the face experiments.

Implements the screens the session state machine asks for (instruction,
display check, stimulus, mask, prompts, overlays, progress bar) and the
fidelity presenter (zoom warning, fullscreen prompt).

Every frame goes through ``flip()``, which draws the progress bar when it is
visible and then polls the fidelity monitor. Blocking flows keep their own
flip loops (``show_*``); ``draw_*`` helpers only draw.
"""
from __future__ import annotations

import os
from typing import Any, Callable, Mapping, Sequence

from psychopy import core, event, gui, logging, visual

from config_loader import get_output_dir
from experiment_types import LayoutConfig
from fidelity import PreconditionStatus
from path_utils import find_missing, resolve_path
from responses import ChoicePrompt, CountGridPrompt, Prompt, PromptSlot, SliderPairPrompt
from sequencer import MaskScreen, StimulusScreen
from stimuli import make_placeholder_face
from widgets import ChoiceWidget, ClickTracker, CountGridWidget, SliderPairWidget

PLACEHOLDER_DIR = os.path.join(get_output_dir(), 'placeholders')


def _never() -> bool:
    return False


class Renderer:
    """Screen runner and fidelity presenter for one PsychoPy window.

    Architecture:
    - show_*: blocking flows with internal flip loops
    - draw_* / *_stim: drawing primitives (caller flips)
    - flip(): the one place frames are swapped
    """

    def __init__(
        self,
        win: visual.Window,
        layout: LayoutConfig,
        probe: Any,
        texts: Mapping[str, str] | None = None,
        debug_mode: bool = False,
        placeholder_dir: str | None = None,
    ) -> None:
        """Args:
            win: PsychoPy window (units='pix')
            layout: layout configuration
            probe: display probe used to re-enter fullscreen
            texts: overlay and button texts
            debug_mode: if True, instruction buttons are clickable at once
            placeholder_dir: where generated placeholder faces are written
        """
        self.win = win
        self.layout = layout
        self.probe = probe
        self.texts = dict(texts or {})
        self.debug_mode = debug_mode
        self.placeholder_dir = placeholder_dir or PLACEHOLDER_DIR
        self.monitor: Any = None

        self._progress_visible = False
        self._progress = (0, 0)
        self._substitutes: dict[str, str] = {}
        self._progress_frame = visual.Rect(
            win, width=layout['progress_width'], height=layout['progress_height'],
            pos=(0, layout['progress_y']), lineColor='white', fillColor=None,
        )
        self._progress_fill = visual.Rect(
            win, width=0, height=layout['progress_height'],
            pos=(0, layout['progress_y']), lineColor=None, fillColor='white',
        )
        self._fixation = visual.TextStim(
            win, text='+', height=layout['fixation_height'], color='white', font=layout['font_main']
        )
        self._widgets = {
            ChoicePrompt: ChoiceWidget(self),
            SliderPairPrompt: SliderPairWidget(self),
            CountGridPrompt: CountGridWidget(self),
        }

    def attach_monitor(self, monitor: Any) -> None:
        self.monitor = monitor

    def _session_over(self) -> bool:
        return self.monitor is not None and self.monitor.ended

    # =========================================================================
    # FRAME
    # =========================================================================

    def flip(self) -> None:
        if self._progress_visible:
            self.draw_progress()
        self.win.flip()
        if self.monitor is not None:
            self.monitor.poll(core.getTime())

    # =========================================================================
    # PRIMITIVES
    # =========================================================================

    def text_stim(self, text: str, pos: tuple[float, float] = (0, 0), **kwargs: Any) -> visual.TextStim:
        params = dict(
            height=self.layout['text_height'],
            color='white',
            font=self.layout['font_main'],
            wrapWidth=self.layout['instruction_wrap_width'],
        )
        params.update(kwargs)
        return visual.TextStim(self.win, text=text, pos=pos, **params)

    def button_row(self, n: int, y: float) -> list[tuple[float, float]]:
        step = self.layout['button_width'] + self.layout['button_gap']
        return [((i - (n - 1) / 2.0) * step, y) for i in range(n)]

    def draw_button(
        self,
        label: str,
        pos: tuple[float, float],
        mouse: Any,
        enabled: bool = True,
        width: float | None = None,
    ) -> visual.Rect:
        """Draw a button with hover effect. Returns the rect for hit testing."""
        layout = self.layout
        rect = visual.Rect(
            self.win,
            width=width or layout['button_width'],
            height=layout['button_height'],
            pos=pos,
            lineColor='white',
        )
        if enabled:
            hovered = rect.contains(mouse)
            rect.fillColor = layout['button_fill_hover'] if hovered else layout['button_fill_normal']
        else:
            rect.fillColor = layout['button_fill_disabled']
        rect.draw()
        visual.TextStim(
            self.win, text=label, pos=pos, height=layout['button_label_height'],
            color='white' if enabled else 'gray', font=layout['font_main'],
        ).draw()
        return rect

    def draw_progress(self) -> None:
        completed, total = self._progress
        width = self.layout['progress_width']
        frac = (completed / total) if total else 0.0
        frac = max(0.0, min(1.0, frac))
        self._progress_fill.width = width * frac
        self._progress_fill.pos = (-width / 2.0 + width * frac / 2.0, self.layout['progress_y'])
        self._progress_frame.draw()
        if frac > 0:
            self._progress_fill.draw()

    def _placeholder(self, label: str, size_px: int, smile: bool) -> str:
        name = f"{label or 'missing'}_{'smile' if smile else 'nosmile'}_{size_px}.png"
        path = os.path.join(self.placeholder_dir, name)
        if not os.path.exists(path):
            make_placeholder_face(label, size_px, smile, path)
        return path

    def image_stim(
        self,
        path: str | None,
        size: tuple[int, int],
        pos: tuple[float, float],
        label: str = '',
        smile: bool = False,
    ) -> visual.ImageStim:
        """ImageStim for a stimulus; generated placeholder if the path is None or missing."""
        if path is None:
            source = self._placeholder(label, size[0], smile)
        elif path in self._substitutes:
            source = self._substitutes[path]
        else:
            source = resolve_path(path)
        return visual.ImageStim(self.win, image=source, pos=pos, size=size)

    # =========================================================================
    # SCREEN RUNNER
    # =========================================================================

    def preload(self, paths: Sequence[str]) -> list[str]:
        """Check every stimulus file; missing ones get a placeholder substitute."""
        missing = find_missing(paths)
        for path in missing:
            logging.warning(f"Stimulus missing, using placeholder: {path}")
            smile = '_smile_' in os.path.basename(path)
            self._substitutes[path] = self._placeholder('MISSING', 256, smile)
        return missing

    def show_instruction(
        self,
        text: str,
        buttons: Sequence[str],
        should_abort: Callable[[], bool] = _never,
        delay: float | None = None,
    ) -> int | None:
        """Instruction screen with delayed clickable buttons (blocking).

        Returns:
            Index of the clicked button, or None if aborted.
        """
        layout = self.layout
        if delay is None:
            delay = 0.0 if self.debug_mode else layout['instruction_button_delay']
        body = self.text_stim(text, pos=(0, 60))
        positions = self.button_row(len(buttons), layout['instruction_button_y'])
        mouse = event.Mouse(win=self.win)
        clicks = ClickTracker(mouse)
        show_start = core.getTime()

        while not should_abort():
            elapsed = core.getTime() - show_start
            clickable = elapsed >= delay
            body.draw()
            rects = []
            for label, pos in zip(buttons, positions):
                remaining = int(max(0, delay - elapsed)) + 1
                shown = label if clickable else f"{label} ({remaining}s)"
                rects.append(self.draw_button(shown, pos, mouse, enabled=clickable))
            self.flip()

            if clicks.released() and clickable:
                for i, rect in enumerate(rects):
                    if rect.contains(mouse):
                        return i
        return None

    def show_precondition(self, status: PreconditionStatus) -> str:
        lines = [
            self.texts.get('precondition_title', 'Display check'),
            '',
            f"Fullscreen: {'OK' if status.fullscreen_ok else 'NOT ACTIVE'}",
            f"Display scaling: {status.zoom_level}% "
            f"({'OK' if status.zoom_ok else 'must be 100%'})",
            f"Pixel ratio: {status.pixel_ratio:.2f}   Attempt: {status.attempt}",
        ]
        if status.bypass_allowed:
            lines += ['', 'Scaling could not be confirmed automatically.',
                      'If you are sure it is set to 100%, you may proceed anyway.']
        choices = status.choices
        index = self.show_instruction('\n'.join(lines), choices, delay=0.0)
        return choices[index if index is not None else 0]

    def enter_fullscreen(self) -> bool:
        ok = self.probe.request_fullscreen()
        # Let the window manager apply the change before the next check
        for _ in range(10):
            self.win.flip()
        return ok

    def show_stimulus(self, screen: StimulusScreen, should_abort: Callable[[], bool] = _never) -> None:
        gap = self.layout['grid_gap']
        stims = []
        for index, (path, size) in enumerate(screen.images):
            row, col = divmod(index, screen.cols)
            x = (col - (screen.cols - 1) / 2.0) * (size[0] + gap)
            y = ((screen.rows - 1) / 2.0 - row) * (size[1] + gap)
            smile = screen.smiles[index] if index < len(screen.smiles) else False
            stims.append(self.image_stim(path, size, (x, y), screen.placeholder_label, smile))
        self._timed(lambda: [s.draw() for s in stims], screen.duration_ms, should_abort)

    def show_mask(self, screen: MaskScreen, should_abort: Callable[[], bool] = _never) -> None:
        self._timed(self._fixation.draw, screen.duration_ms, should_abort)

    def _timed(self, draw: Callable[[], Any], duration_ms: int, should_abort: Callable[[], bool]) -> None:
        event.clearEvents()
        clock = core.Clock()
        while clock.getTime() * 1000.0 < duration_ms and not should_abort():
            draw()
            self.flip()
        # Input during a no-input screen is discarded
        event.clearEvents()

    def present(self, prompt: Prompt, slot: PromptSlot, should_abort: Callable[[], bool] = _never) -> None:
        self._widgets[type(prompt)].present(prompt, slot, should_abort)

    def collect_demographics(self, fields: Mapping[str, Any], title: str) -> dict[str, Any] | None:
        info = dict(fields)
        dlg = gui.DlgFromDict(info, title=title or 'About you', order=list(fields))
        if not dlg.OK:
            logging.warning("Demographics dialog cancelled")
            return None
        return info

    def show_overlay(self, text: str, terminal: bool = False) -> None:
        """Full-screen message. Terminal overlays stay until a key or click."""
        panel = visual.Rect(
            self.win, width=self.win.size[0], height=self.win.size[1],
            fillColor=self.layout['overlay_fill'], lineColor=None,
        )
        body = self.text_stim(text)
        mouse = event.Mouse(win=self.win)
        clicks = ClickTracker(mouse)
        event.clearEvents()
        while True:
            panel.draw()
            body.draw()
            self.win.flip()
            if event.getKeys() or clicks.released():
                break
            if not terminal:
                break

    def show_progress(self, visible: bool) -> None:
        self._progress_visible = visible

    def set_progress(self, completed: int, total: int) -> None:
        self._progress = (completed, total)

    # =========================================================================
    # FIDELITY PRESENTER
    # =========================================================================

    def show_zoom_warning(self, observed_ratio: float) -> None:
        text = self.texts.get('zoom_warning', 'Display scaling changed.')
        text += f"\n\nDetected scaling: {round(observed_ratio * 100)}%"
        self._modal(text, self.texts.get('zoom_warning_button', 'Continue'))

    def show_fullscreen_prompt(self) -> None:
        clicked = self._modal(
            self.texts.get('fullscreen_prompt', 'Please return to fullscreen.'),
            self.texts.get('fullscreen_prompt_button', 'Return to Fullscreen'),
        )
        if clicked:
            self.probe.request_fullscreen()

    def dismiss_fullscreen_prompt(self) -> None:
        logging.info("Fullscreen restored")

    def _modal(self, text: str, button: str) -> bool:
        """Blocking overlay with one button. Returns False if the session ended meanwhile."""
        panel = visual.Rect(
            self.win, width=self.win.size[0], height=self.win.size[1],
            fillColor=self.layout['overlay_fill'], lineColor=None,
        )
        body = self.text_stim(text, pos=(0, 60))
        pos = (0, self.layout['instruction_button_y'])
        mouse = event.Mouse(win=self.win)
        clicks = ClickTracker(mouse)
        while not self._session_over():
            panel.draw()
            body.draw()
            rect = self.draw_button(button, pos, mouse)
            self.flip()
            if clicks.released() and rect.contains(mouse):
                return True
        return False
