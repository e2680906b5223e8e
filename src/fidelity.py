"""Display-fidelity monitor: approved scale baseline, drift detection, fullscreen watch.

Stimulus size is an experimental manipulation, so the window must keep the
pixel ratio approved by the precondition check. Three independent producers
feed one consumer, ``report_observed_ratio``:

- window resize events (pyglet ``on_resize``)
- a scale listener keyed to the current ratio (pyglet ``on_scale``), re-keyed
  after every firing because the key itself depends on the ratio
- a frame-loop poll throttled to ``poll_interval`` seconds

The consumer deduplicates practice events and warnings against the last
observed value, so the same underlying change reported by all three producers
is acted upon once. Every report is still compared with the baseline, so a
deviation left over from practice ends the main block on the next check.

Scale-bucket inference (1x / 2x / 3x displays) is an empirical heuristic and
may misclassify fractionally scaled displays; the precondition loop offers a
manual bypass for that reason.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, NamedTuple, Protocol

from psychopy import logging

from experiment_types import FidelityConfig, FidelityEventRecord, ZoomTracking

DEFAULT_DRIFT_TOLERANCE = 0.01
DEFAULT_PRECONDITION_TOLERANCE_PCT = 5.0
DEFAULT_POLL_INTERVAL = 0.5
DEFAULT_BYPASS_MIN_ATTEMPTS = 3


# =============================================================================
# SCALE HEURISTICS
# =============================================================================

def scale_bucket(ratio: float) -> int:
    """Guess the display's native pixel ratio (its ratio at 100% scaling).

    - 1.9..2.1  -> 2 (HiDPI at 100%)
    - 2.9..3.1  -> 3 (3x display at 100%)
    - 3.9..4.1  -> 2 (HiDPI at 200%, or 4x at 100%)
    - 2.1..2.9, 3.1..3.9 -> 2 (HiDPI with scaling)
    - anything else -> 1 (standard display)
    """
    if 1.9 <= ratio <= 2.1:
        return 2
    if 2.9 <= ratio <= 3.1:
        return 3
    if 3.9 <= ratio <= 4.1:
        return 2
    if 2.1 < ratio < 2.9:
        return 2
    if 3.1 < ratio < 3.9:
        return 2
    return 1


def detect_zoom_level(
    ratio: float | None,
    bucket: Callable[[float], int] = scale_bucket,
) -> int:
    """Zoom level in percent (100 = native scaling)."""
    ratio = ratio or 1.0
    return round(ratio / bucket(ratio) * 100)


def is_zoom_at_100(
    ratio: float | None,
    tolerance_pct: float = DEFAULT_PRECONDITION_TOLERANCE_PCT,
    bucket: Callable[[float], int] = scale_bucket,
) -> bool:
    zoom = detect_zoom_level(ratio, bucket)
    return 100 - tolerance_pct <= zoom <= 100 + tolerance_pct


# =============================================================================
# COLLABORATORS
# =============================================================================

class DisplayProbe(Protocol):
    def pixel_ratio(self) -> float: ...
    def is_fullscreen(self) -> bool: ...
    def window_handle(self) -> Any: ...


class FidelityPresenter(Protocol):
    def show_zoom_warning(self, observed_ratio: float) -> None: ...
    def show_fullscreen_prompt(self) -> None: ...
    def dismiss_fullscreen_prompt(self) -> None: ...


class PreconditionStatus(NamedTuple):
    attempt: int
    pixel_ratio: float
    zoom_level: int
    zoom_ok: bool
    fullscreen_ok: bool
    bypass_allowed: bool

    @property
    def satisfied(self) -> bool:
        return self.zoom_ok and self.fullscreen_ok

    @property
    def choices(self) -> list[str]:
        """Button labels offered on the precondition screen."""
        if self.satisfied:
            return ['Continue']
        if not self.fullscreen_ok:
            return ['Re-enter Fullscreen', 'Check Again']
        if self.bypass_allowed:
            return ['Check Again', 'Proceed Anyway']
        return ['Check Again']


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


# =============================================================================
# MONITOR
# =============================================================================

class FidelityMonitor:
    """Tracks the approved pixel ratio for one session and reacts to drift.

    Policy:
    - practice mode: a deviation shows a dismissible warning, once per
      distinct observed ratio
    - main mode (after ``end_practice_mode``): a deviation ends the session
      through ``on_violation`` and stops all monitoring

    Every deviation is appended to ``events``; the list is never mutated
    otherwise and is exported as the audit trail.
    """

    def __init__(
        self,
        probe: DisplayProbe,
        presenter: FidelityPresenter,
        on_violation: Callable[[FidelityEventRecord], None] | None = None,
        config: FidelityConfig | None = None,
        bucket: Callable[[float], int] = scale_bucket,
        timestamp: Callable[[], str] = _now_iso,
    ) -> None:
        config = config or {}
        self.probe = probe
        self.presenter = presenter
        self.on_violation = on_violation
        self.bucket = bucket
        self._timestamp = timestamp

        self.drift_tolerance = float(config.get('drift_tolerance', DEFAULT_DRIFT_TOLERANCE))
        self.precondition_tolerance_pct = float(
            config.get('precondition_tolerance_pct', DEFAULT_PRECONDITION_TOLERANCE_PCT)
        )
        self.poll_interval = config.get('poll_interval_ms', DEFAULT_POLL_INTERVAL * 1000) / 1000.0
        self.bypass_min_attempts = int(config.get('bypass_min_attempts', DEFAULT_BYPASS_MIN_ATTEMPTS))

        self._baseline: float | None = None
        self.events: list[FidelityEventRecord] = []
        self.practice_mode = True
        self.active = False
        self.ended = False
        self.terminated = False
        self.bypassed = False
        self.attempts = 0

        self._last_seen: float | None = None
        self._last_warned: float | None = None
        self._last_poll: float | None = None
        self._scale_key: float | None = None
        self._handle: Any = None
        self._handlers: dict[str, Callable[..., None]] = {}
        self._watch_fullscreen = False
        self._fullscreen_prompt_shown = False
        self._fullscreen_lost = False

    # =========================================================================
    # PRECONDITION
    # =========================================================================

    def evaluate_precondition(self) -> PreconditionStatus:
        """Count one attempt and read the display state fresh."""
        self.attempts += 1
        return self.current_status()

    def current_status(self) -> PreconditionStatus:
        """Read the display state without counting an attempt."""
        ratio = self.probe.pixel_ratio()
        zoom_ok = is_zoom_at_100(ratio, self.precondition_tolerance_pct, self.bucket)
        fullscreen_ok = self.probe.is_fullscreen()
        return PreconditionStatus(
            attempt=self.attempts,
            pixel_ratio=ratio,
            zoom_level=detect_zoom_level(ratio, self.bucket),
            zoom_ok=zoom_ok,
            fullscreen_ok=fullscreen_ok,
            bypass_allowed=(
                self.attempts >= self.bypass_min_attempts and not zoom_ok and fullscreen_ok
            ),
        )

    def mark_bypassed(self) -> None:
        self.bypassed = True
        logging.warning(f"Display check bypassed after {self.attempts} attempts")

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @property
    def baseline(self) -> float | None:
        """Approved pixel ratio; set once by ``initialize`` and never changed."""
        return self._baseline

    def initialize(self) -> None:
        """Capture the approved ratio and start tracking. Idempotent."""
        if self.active or self._baseline is not None or self.ended:
            return
        self._baseline = self.probe.pixel_ratio()
        self._last_seen = self._baseline
        self._scale_key = self._baseline
        self.active = True
        logging.info(f"Fidelity tracking initialized. Approved pixel ratio: {self._baseline}")

    def attach(self, handle: Any = None) -> None:
        """Register resize and scale listeners on a pyglet window handle."""
        handle = handle if handle is not None else self.probe.window_handle()
        if handle is None or self._handle is not None or not self.active:
            return
        handlers = {'on_resize': self._on_resize}
        # on_scale only exists on pyglet 2 windows
        if 'on_scale' in getattr(handle, 'event_types', ()):
            handlers['on_scale'] = self._on_scale
        handle.push_handlers(**handlers)
        self._handle = handle
        self._handlers = handlers

    def end_practice_mode(self) -> None:
        """Switch the response policy from warn to terminate."""
        self.practice_mode = False
        logging.info("Practice mode ended. Display scaling changes now terminate the session.")

    def start_fullscreen_watch(self) -> None:
        self._watch_fullscreen = True

    def teardown(self) -> None:
        """Remove listeners and stop drift checks. Safe to call repeatedly."""
        if self._handle is not None:
            try:
                self._handle.remove_handlers(**self._handlers)
            except (AttributeError, ValueError):
                pass
            self._handle = None
        self.active = False

    def end(self) -> None:
        """Session is over: stop every watcher."""
        self.ended = True
        self._watch_fullscreen = False
        self.teardown()

    # =========================================================================
    # PRODUCERS
    # =========================================================================

    def _on_resize(self, width: int, height: int) -> None:
        self.check_now()

    def _on_scale(self, scale: float, dpi: int) -> None:
        key = self._scale_key
        if key is not None and abs(scale - key) <= self.drift_tolerance:
            return
        # Re-key on the new ratio before reporting
        self._scale_key = scale
        self.report_observed_ratio(self.probe.pixel_ratio(), source='scale')

    def poll(self, now: float) -> None:
        """Frame-loop hook: fullscreen state every call, drift check per interval."""
        if self.ended:
            return
        if self._watch_fullscreen:
            self.on_fullscreen_change(self.probe.is_fullscreen())
        if not self.active:
            return
        if self._last_poll is None or now - self._last_poll >= self.poll_interval:
            self._last_poll = now
            self.check_now()

    def check_now(self) -> bool:
        """Compare the live ratio to the baseline now."""
        if not self.active or self.ended:
            return False
        return self.report_observed_ratio(self.probe.pixel_ratio(), source='check')

    # =========================================================================
    # CONSUMER
    # =========================================================================

    def report_observed_ratio(self, value: float, source: str = 'poll') -> bool:
        """Single entry point for every producer.

        Returns:
            True if a deviation event was recorded for this report.
        """
        if not self.active or self.ended or self.terminated or self._baseline is None:
            return False
        tol = self.drift_tolerance
        changed = self._last_seen is None or abs(value - self._last_seen) > tol
        self._last_seen = value
        if abs(value - self._baseline) <= tol:
            return False
        # A deviation carried over from practice still terminates the main block
        if self.practice_mode and not changed:
            return False

        event: FidelityEventRecord = {
            'timestamp': self._timestamp(),
            'approved_dpr': self._baseline,
            'current_dpr': value,
            'detected_zoom': round(value * 100),
        }
        self.events.append(event)
        logging.warning(
            f"Pixel ratio change detected ({source}): approved {self._baseline} -> current {value}"
        )

        if self.practice_mode:
            if self._last_warned is None or abs(value - self._last_warned) > tol:
                self._last_warned = value
                self.presenter.show_zoom_warning(value)
        else:
            self._terminate(event)
        return True

    def _terminate(self, event: FidelityEventRecord) -> None:
        if self.terminated:
            return
        self.terminated = True
        self.teardown()
        logging.error("Session terminated: pixel ratio changed during the main block")
        if self.on_violation is not None:
            self.on_violation(event)

    # =========================================================================
    # FULLSCREEN
    # =========================================================================

    def on_fullscreen_change(self, is_fullscreen: bool) -> None:
        """Show the re-entry prompt whenever the window is windowed and no prompt is up."""
        if self.ended or not self._watch_fullscreen:
            return
        if not is_fullscreen and not self._fullscreen_prompt_shown:
            self._fullscreen_prompt_shown = True
            self._fullscreen_lost = True
            logging.warning("Fullscreen exited; showing re-entry prompt")
            try:
                self.presenter.show_fullscreen_prompt()
            finally:
                # The prompt is modal: once it returns it is no longer on screen
                self._fullscreen_prompt_shown = False
        elif is_fullscreen and self._fullscreen_lost:
            self._fullscreen_lost = False
            self.presenter.dismiss_fullscreen_prompt()

    # =========================================================================
    # EXPORT
    # =========================================================================

    def tracking_data(self) -> ZoomTracking:
        return {
            'zoom_check_bypassed': self.bypassed,
            'zoom_check_attempts': self.attempts,
            'approved_dpr': self._baseline,
            'initial_dpr': self._baseline,
            'zoom_changes_count': len(self.events),
            'zoom_changes': [dict(e) for e in self.events],
            'terminated_due_to_zoom': self.terminated,
        }
