"""Session state machine: drives one participant session from preload to close.

Timeline (linear, with one self-loop and two hard-exit edges):

    Preload -> PreconditionIntro -> EnterFullscreen -> PreconditionLoop (self-loop)
    -> InitFidelityMonitor -> Welcome -> Consent -> Demographics -> Instructions
    -> PracticeIntro -> Practice -> PracticeFeedback -> EndPracticeMode
    -> MainBlock -> Debrief -> Export -> Closed

    Consent   -> Terminated (declined)
    MainBlock -> Terminated (fidelity), fired by the monitor in the background

Terminated and Closed are absorbing: no screen is shown after them except the
terminal overlay, and the fidelity monitor is torn down on entry.
"""
from __future__ import annotations

import enum
import random
import string
from typing import Any, Callable, Mapping, Protocol, Sequence

from psychopy import core, logging

from experiment_types import FidelityEventRecord
from fidelity import FidelityMonitor, PreconditionStatus
from responses import Prompt, PromptSlot
from sequencer import (
    MaskScreen,
    PresentationDesign,
    PresentationOutcome,
    PresentationSpec,
    StimulusScreen,
    TrialSequencer,
)

ID_ALPHABET = string.ascii_lowercase + string.digits
ID_LENGTH = 10


class Phase(enum.Enum):
    PRELOAD = 'preload'
    PRECONDITION_INTRO = 'precondition_intro'
    ENTER_FULLSCREEN = 'enter_fullscreen'
    PRECONDITION_LOOP = 'precondition_loop'
    INIT_FIDELITY_MONITOR = 'init_fidelity_monitor'
    WELCOME = 'welcome'
    CONSENT = 'consent'
    DEMOGRAPHICS = 'demographics'
    INSTRUCTIONS = 'instructions'
    PRACTICE_INTRO = 'practice_intro'
    PRACTICE = 'practice'
    PRACTICE_FEEDBACK = 'practice_feedback'
    END_PRACTICE_MODE = 'end_practice_mode'
    MAIN_BLOCK = 'main_block'
    DEBRIEF = 'debrief'
    EXPORT = 'export'
    CLOSED = 'closed'
    TERMINATED = 'terminated'


class TerminationCause(enum.Enum):
    FIDELITY = 'fidelity'
    DECLINED = 'declined'


TRANSITIONS: dict[Phase, frozenset[Phase]] = {
    Phase.PRELOAD: frozenset({Phase.PRECONDITION_INTRO}),
    Phase.PRECONDITION_INTRO: frozenset({Phase.ENTER_FULLSCREEN}),
    Phase.ENTER_FULLSCREEN: frozenset({Phase.PRECONDITION_LOOP}),
    Phase.PRECONDITION_LOOP: frozenset({Phase.PRECONDITION_LOOP, Phase.INIT_FIDELITY_MONITOR}),
    Phase.INIT_FIDELITY_MONITOR: frozenset({Phase.WELCOME}),
    Phase.WELCOME: frozenset({Phase.CONSENT}),
    Phase.CONSENT: frozenset({Phase.DEMOGRAPHICS, Phase.TERMINATED}),
    Phase.DEMOGRAPHICS: frozenset({Phase.INSTRUCTIONS}),
    Phase.INSTRUCTIONS: frozenset({Phase.PRACTICE_INTRO}),
    Phase.PRACTICE_INTRO: frozenset({Phase.PRACTICE}),
    Phase.PRACTICE: frozenset({Phase.PRACTICE_FEEDBACK}),
    Phase.PRACTICE_FEEDBACK: frozenset({Phase.END_PRACTICE_MODE}),
    Phase.END_PRACTICE_MODE: frozenset({Phase.MAIN_BLOCK}),
    Phase.MAIN_BLOCK: frozenset({Phase.DEBRIEF, Phase.TERMINATED}),
    Phase.DEBRIEF: frozenset({Phase.EXPORT}),
    Phase.EXPORT: frozenset({Phase.CLOSED}),
    Phase.CLOSED: frozenset(),
    Phase.TERMINATED: frozenset(),
}

TERMINAL_PHASES = frozenset({Phase.CLOSED, Phase.TERMINATED})


class InvalidTransition(RuntimeError):
    """Raised for an edge that is not in the session timeline."""


def new_participant_id(rng: random.Random | None = None) -> str:
    rng = rng or random.Random()
    return ''.join(rng.choice(ID_ALPHABET) for _ in range(ID_LENGTH))


class Session:
    """One participant's run. Lives in memory only."""

    def __init__(self, participant_id: str | None = None) -> None:
        self.id = participant_id or new_participant_id()
        self.demographics: dict[str, Any] = {}
        self.outcomes: list[PresentationOutcome] = []
        self.practice_outcomes: list[PresentationOutcome] = []
        self.phase = Phase.PRELOAD
        self.terminated_for_cause = False
        self.cause: TerminationCause | None = None
        self.completed = 0
        self.ended = False
        self.precondition_attempts: list[dict[str, Any]] = []
        self.missing_stimuli: list[str] = []
        self.duration_seconds: float | None = None

    def record(self, outcome: PresentationOutcome) -> None:
        """Append an outcome; practice outcomes are kept apart from the dataset."""
        if outcome.spec.is_practice:
            self.practice_outcomes.append(outcome)
        else:
            self.outcomes.append(outcome)


class ScreenRunner(Protocol):
    """Screens the state machine needs; implemented by the PsychoPy renderer and test fakes."""

    def preload(self, paths: Sequence[str]) -> list[str]: ...

    def show_instruction(
        self, text: str, buttons: Sequence[str], should_abort: Callable[[], bool]
    ) -> int | None: ...

    def show_precondition(self, status: PreconditionStatus) -> str: ...

    def enter_fullscreen(self) -> bool: ...

    def show_stimulus(self, screen: StimulusScreen, should_abort: Callable[[], bool]) -> None: ...

    def show_mask(self, screen: MaskScreen, should_abort: Callable[[], bool]) -> None: ...

    def present(self, prompt: Prompt, slot: PromptSlot, should_abort: Callable[[], bool]) -> None: ...

    def collect_demographics(self, fields: Mapping[str, Any], title: str) -> dict[str, Any] | None: ...

    def show_overlay(self, text: str, terminal: bool = False) -> None: ...

    def show_progress(self, visible: bool) -> None: ...

    def set_progress(self, completed: int, total: int) -> None: ...


class SessionExporter(Protocol):
    def export(
        self, session: Session, monitor: FidelityMonitor, design: PresentationDesign
    ) -> Any: ...


class SessionStateMachine:
    """Runs one session of one experiment design.

    The fidelity monitor must be constructed with ``on_violation`` left as
    None; the state machine installs its own handler.
    """

    def __init__(
        self,
        design: PresentationDesign,
        runner: ScreenRunner,
        monitor: FidelityMonitor,
        exporter: SessionExporter,
        clock: Any = None,
        session: Session | None = None,
        demographic_fields: Mapping[str, Any] | None = None,
    ) -> None:
        self.design = design
        self.runner = runner
        self.monitor = monitor
        self.exporter = exporter
        self.clock = clock if clock is not None else core.Clock()
        self.session = session or Session()
        self.sequencer = TrialSequencer(design)
        self.texts = design.texts
        self.demographic_fields = dict(demographic_fields or {})
        self.export_result: Any = None
        self._practice_mode_ended = False
        self._started_at: float | None = None
        self._main_total = 0
        self.monitor.on_violation = self._on_fidelity_violation

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def phase(self) -> Phase:
        return self.session.phase

    def should_abort(self) -> bool:
        return self.session.ended

    def transition(self, target: Phase) -> None:
        current = self.session.phase
        if target not in TRANSITIONS[current]:
            raise InvalidTransition(f"{current.value} -> {target.value}")
        self.session.phase = target
        logging.exp(f"Session {self.session.id}: {current.value} -> {target.value}")
        if target in TERMINAL_PHASES:
            self.session.ended = True
            self.monitor.end()

    def terminate(self, cause: TerminationCause) -> None:
        """End the session for cause. Repeated calls are no-ops."""
        if self.session.phase in TERMINAL_PHASES:
            return
        self.session.terminated_for_cause = True
        self.session.cause = cause
        self.transition(Phase.TERMINATED)
        logging.warning(f"Session {self.session.id} terminated: {cause.value}")
        self.runner.show_overlay(self.texts.get(f"terminated_{cause.value}", ''), terminal=True)

    def end_practice_mode(self) -> None:
        """Flip the monitor to terminate-on-drift and reset the progress bar. Runs once."""
        if self._practice_mode_ended:
            return
        self._practice_mode_ended = True
        self.transition(Phase.END_PRACTICE_MODE)
        self.monitor.end_practice_mode()
        self.runner.set_progress(0, self._main_total)
        self.runner.show_progress(True)

    def _on_fidelity_violation(self, event: FidelityEventRecord) -> None:
        self.terminate(TerminationCause.FIDELITY)

    # =========================================================================
    # TIMELINE
    # =========================================================================

    def run(self) -> Session:
        """Drive the full timeline. Returns the session (ended)."""
        self._started_at = self.clock.getTime()
        practice = self.design.practice_specs()
        main = self.design.main_specs()
        self._main_total = len(main)

        self._preload()
        self._precondition()
        self.transition(Phase.INIT_FIDELITY_MONITOR)
        self.monitor.initialize()
        self.monitor.attach()
        self.monitor.start_fullscreen_watch()

        self._instruction(Phase.WELCOME, 'welcome')
        self.transition(Phase.CONSENT)
        agree = self.texts.get('consent_agree', 'I Agree')
        decline = self.texts.get('consent_decline', 'I Do Not Agree')
        choice = self.runner.show_instruction(
            self.texts.get('consent', ''), [agree, decline], self.should_abort
        )
        if choice != 0:
            self.terminate(TerminationCause.DECLINED)
            return self._finish()

        self.transition(Phase.DEMOGRAPHICS)
        answers = self.runner.collect_demographics(
            self.demographic_fields, self.texts.get('demographics_title', '')
        )
        self.session.demographics = dict(answers or {})

        self._instruction(Phase.INSTRUCTIONS, 'instructions')
        self._instruction(Phase.PRACTICE_INTRO, 'practice_intro')
        self.transition(Phase.PRACTICE)
        for spec in practice:
            self._run_presentation(spec)
        self._instruction(Phase.PRACTICE_FEEDBACK, 'practice_feedback')
        self.end_practice_mode()

        self.transition(Phase.MAIN_BLOCK)
        for spec in main:
            if self.should_abort():
                break
            self._run_presentation(spec)
            if not self.should_abort():
                self.runner.set_progress(self.sequencer.completed, self._main_total)

        if self.session.terminated_for_cause:
            # Partial data and the fidelity audit trail are still exported
            self._export()
            return self._finish()

        self.transition(Phase.DEBRIEF)
        self.monitor.end()
        self.runner.show_progress(False)
        self.runner.show_instruction(
            self.texts.get('debrief', ''), [self.texts.get('debrief_button', 'Finish')], _never
        )
        self.transition(Phase.EXPORT)
        self._export()
        self.transition(Phase.CLOSED)
        self.runner.show_overlay(self.texts.get('complete', ''), terminal=True)
        return self._finish()

    def _preload(self) -> None:
        missing = self.runner.preload(self.design.image_paths())
        self.session.missing_stimuli = list(missing)
        if missing:
            logging.warning(f"{len(missing)} stimulus files missing; placeholders will be shown")
        self.transition(Phase.PRECONDITION_INTRO)
        self.runner.show_instruction(
            self.texts.get('precondition_intro', ''),
            [self.texts.get('precondition_intro_button', 'Continue')],
            _never,
        )
        self.transition(Phase.ENTER_FULLSCREEN)
        self.runner.show_instruction(
            self.texts.get('enter_fullscreen', ''),
            [self.texts.get('enter_fullscreen_button', 'Enter Fullscreen')],
            _never,
        )
        self.runner.enter_fullscreen()

    def _precondition(self) -> None:
        """Loop until fullscreen and 100% scaling are confirmed, or bypassed."""
        self.transition(Phase.PRECONDITION_LOOP)
        while True:
            status = self.monitor.evaluate_precondition()
            self.session.precondition_attempts.append(status._asdict())
            choice = self.runner.show_precondition(status)
            if choice == 'Re-enter Fullscreen':
                self.runner.enter_fullscreen()
            elif choice == 'Proceed Anyway' and status.bypass_allowed:
                self.monitor.mark_bypassed()
                return
            elif choice == 'Continue' and self.monitor.current_status().satisfied:
                return
            self.transition(Phase.PRECONDITION_LOOP)

    def _instruction(self, phase: Phase, key: str) -> None:
        self.transition(phase)
        text = self.texts.get(key)
        if text:
            button = self.texts.get(f"{key}_button", 'Continue')
            self.runner.show_instruction(text, [button], self.should_abort)

    def _run_presentation(self, spec: PresentationSpec) -> None:
        outcome = self.sequencer.run(spec, self.runner, self.should_abort)
        if outcome is not None and not self.should_abort():
            self.session.record(outcome)
            self.session.completed = self.sequencer.completed

    def _export(self) -> None:
        self.export_result = self.exporter.export(self.session, self.monitor, self.design)

    def _finish(self) -> Session:
        self.monitor.end()
        if self._started_at is not None:
            self.session.duration_seconds = round(self.clock.getTime() - self._started_at, 3)
        return self.session


def _never() -> bool:
    return False
