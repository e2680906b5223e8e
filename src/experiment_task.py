"""Face experiment task - core module.

Wires one session together:
- Window creation (debug: 1280x800, normal: fullscreen), pixel units
- Display probe, renderer and fidelity monitor
- Experiment design selected from configs/sequence.json
- Session state machine and exporter

Architecture:
    - create_window(): context manager owning the PsychoPy window
    - FaceExperimentTask: builds the collaborators and runs one session
"""
from __future__ import annotations

import random
from contextlib import contextmanager
from typing import Any

from psychopy import core, logging, visual

from config_loader import design_config
from display import WindowDisplayProbe
from experiment_types import LayoutConfig, SequenceConfig
from exporter import Exporter
from fidelity import FidelityMonitor
from renderer import Renderer
from sequencer import build_design
from session import Session, SessionStateMachine


@contextmanager
def create_window(debug_mode: bool):
    """Context manager to create and clean up a PsychoPy window.

    Args:
        debug_mode: When True, creates a windowed mode for faster debugging.
                    When False, creates a fullscreen window for sessions.

    Yields:
        visual.Window: The created PsychoPy window.
    """
    if debug_mode:
        win = visual.Window(size=(1280, 800), color='black', units='pix', allowGUI=True)
    else:
        win = visual.Window(fullscr=True, color='black', units='pix')
    try:
        yield win
    finally:
        win.close()


class FaceExperimentTask:
    """Runs one session of one experiment variant.

    Public API:
    - run(): create window -> build collaborators -> run session -> cleanup
    """

    def __init__(
        self,
        sequence: SequenceConfig,
        layout: LayoutConfig,
        experiment: str,
        debug_mode: bool = False,
        seed: int | None = None,
    ) -> None:
        self.sequence = sequence
        self.layout = layout
        self.experiment = experiment
        self.design_config = design_config(sequence, experiment)
        self.debug_mode = bool(debug_mode or layout.get('debug_mode', False))
        self.rng = random.Random(seed)
        self.session = Session()
        self.result: Any = None

    def run(self) -> Session:
        logging.info(
            f"Starting '{self.experiment}' session {self.session.id} "
            f"(debug={self.debug_mode})"
        )
        design = build_design(self.design_config, self.rng)
        with create_window(self.debug_mode) as win:
            probe = WindowDisplayProbe(win)
            renderer = Renderer(
                win, self.layout, probe, texts=design.texts, debug_mode=self.debug_mode
            )
            monitor = FidelityMonitor(probe, renderer, config=self.sequence.get('fidelity', {}))
            renderer.attach_monitor(monitor)
            machine = SessionStateMachine(
                design,
                renderer,
                monitor,
                Exporter(self.sequence.get('export', {})),
                clock=core.Clock(),
                session=self.session,
                demographic_fields=self.sequence.get('demographic_fields', {}),
            )
            session = machine.run()
            self.result = machine.export_result
        logging.info(
            f"Session {session.id} ended in phase '{session.phase.value}' "
            f"with {len(session.outcomes)} outcomes"
        )
        return session
