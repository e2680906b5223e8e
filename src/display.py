"""Display probes: read pixel ratio and fullscreen state from a window."""
from __future__ import annotations

from typing import Any

from psychopy import logging


class WindowDisplayProbe:
    """Reads display state from a PsychoPy window with a pyglet backend.

    Pixel ratio lookup order:
    1. pyglet 2 ``scale``
    2. pyglet 1.x ``get_pixel_ratio()``
    3. framebuffer size / window size
    """

    def __init__(self, win: Any) -> None:
        self._win = win

    def window_handle(self) -> Any:
        return getattr(self._win, 'winHandle', None)

    def pixel_ratio(self) -> float:
        handle = self.window_handle()
        if handle is not None:
            scale = getattr(handle, 'scale', None)
            if isinstance(scale, (int, float)) and scale > 0:
                return float(scale)
            get_ratio = getattr(handle, 'get_pixel_ratio', None)
            if callable(get_ratio):
                return float(get_ratio())
            get_fb = getattr(handle, 'get_framebuffer_size', None)
            width = getattr(handle, 'width', 0)
            if callable(get_fb) and width:
                return get_fb()[0] / float(width)
        return 1.0

    def is_fullscreen(self) -> bool:
        handle = self.window_handle()
        if handle is not None and hasattr(handle, 'fullscreen'):
            return bool(handle.fullscreen)
        return bool(getattr(self._win, '_isFullScr', False))

    def request_fullscreen(self) -> bool:
        """Ask the window manager for fullscreen. Returns False if refused."""
        handle = self.window_handle()
        if handle is None:
            return False
        try:
            handle.set_fullscreen(True)
        except Exception as e:  # pyglet raises backend-specific errors
            logging.error(f"Failed to enter fullscreen: {e}")
            return False
        return True


class StaticDisplayProbe:
    """Scripted display state for headless runs and tests."""

    def __init__(self, ratio: float = 1.0, fullscreen: bool = True) -> None:
        self.ratio = ratio
        self.fullscreen = fullscreen

    def window_handle(self) -> Any:
        return None

    def pixel_ratio(self) -> float:
        return self.ratio

    def is_fullscreen(self) -> bool:
        return self.fullscreen

    def request_fullscreen(self) -> bool:
        self.fullscreen = True
        return True
