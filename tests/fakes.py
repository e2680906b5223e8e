"""Test doubles: clock, fidelity presenter, scripted screen runner, design configs."""
import copy

from responses import ChoicePrompt, CountGridPrompt, SliderPairPrompt

INDIVIDUALS = [
    {'id': f'{race}_{gender}_0{n}', 'race': race, 'gender': gender}
    for race in ('asian', 'black', 'hispanic', 'white')
    for gender in ('female', 'male')
    for n in (1, 2)
]

TEXTS = {
    'welcome': 'Welcome',
    'consent': 'Consent?',
    'consent_agree': 'I Agree',
    'consent_decline': 'I Do Not Agree',
    'instructions': 'Instructions',
    'practice_intro': 'Practice',
    'practice_feedback': 'Practice done',
    'debrief': 'Debrief',
    'terminated_fidelity': 'Terminated: scaling',
    'terminated_declined': 'Terminated: declined',
    'complete': 'Complete',
    'pre_round_race': 'Count races',
    'pre_round_smile': 'Count smiles',
}

ATTENTION = {
    'tag': 'attention',
    'kind': 'attention',
    'dataset_key': 'trials',
    'image_path': 'stimuli/images/',
    'sizes': {'big': [256, 256], 'small': [104, 104]},
    'size_levels': ['big', 'small'],
    'repetitions': 4,
    'exposure_ms': 2000,
    'mask_ms': 500,
    'prompt_timeout_ms': 10000,
    'races': ['asian', 'black', 'hispanic', 'white'],
    'practice': {'race': 'white', 'gender': 'female', 'id': '01', 'smile': True, 'size': 'big'},
    'individuals': INDIVIDUALS,
    'texts': TEXTS,
}

MEMORY = {
    'tag': 'memory',
    'kind': 'memory',
    'dataset_key': 'rounds',
    'image_path': 'stimuli/images/',
    'practice_image_path': 'stimuli/practice_images/',
    'sizes': {'big': [256, 256], 'small': [104, 104]},
    'size_levels': ['big', 'small'],
    'question_types': ['race', 'smile'],
    'repetitions': 3,
    'exposure_ms': 5000,
    'mask_ms': 500,
    'prompt_timeout_ms': 30000,
    'races': ['asian', 'black', 'hispanic', 'white'],
    'grid': {'rows': 2, 'cols': 4, 'total_images': 8, 'category_min': 1, 'binary_min': 2,
             'practice_smile_target': 4},
    'practice_individuals': [
        {'id': f'{race}_{gender}_01', 'race': race, 'gender': gender, 'has_smile': gender == 'female'}
        for race in ('asian', 'black', 'hispanic', 'white')
        for gender in ('female', 'male')
    ],
    'individuals': INDIVIDUALS,
    'texts': TEXTS,
}

TRAITS = {
    'tag': 'subj_traits',
    'kind': 'traits',
    'dataset_key': 'trials',
    'image_path': 'stimuli/images/',
    'sizes': {'big': [256, 256], 'small': [104, 104]},
    'size_levels': ['big', 'small'],
    'repetitions': 4,
    'exposure_ms': 0,
    'mask_ms': 0,
    'prompt_timeout_ms': 30000,
    'traits': ['trustworthy', 'competent', 'attractive', 'friendly'],
    'practice': {'race': 'white', 'gender': 'female', 'id': '01', 'smile': True, 'size': 'big'},
    'individuals': INDIVIDUALS,
    'texts': TEXTS,
}


def config(base, **overrides):
    cfg = copy.deepcopy(base)
    cfg.update(overrides)
    return cfg


class FakeClock:
    def __init__(self, t=0.0):
        self.t = t

    def getTime(self):
        return self.t

    def advance(self, seconds):
        self.t += seconds


class FakePresenter:
    def __init__(self):
        self.warnings = []
        self.fullscreen_prompts = 0
        self.dismissals = 0

    def show_zoom_warning(self, observed_ratio):
        self.warnings.append(observed_ratio)

    def show_fullscreen_prompt(self):
        self.fullscreen_prompts += 1

    def dismiss_fullscreen_prompt(self):
        self.dismissals += 1


class RecordingExporter:
    def __init__(self):
        self.calls = []

    def export(self, session, monitor, design):
        self.calls.append((session, monitor, design))
        return 'exported'


class ScriptedRunner(FakePresenter):
    """Screen runner that answers every screen without drawing.

    Args:
        answer: 'timeout' leaves every prompt unanswered, 'submit' answers it
        consent: index of the consent button to click
        precondition_choices: labels returned by successive display checks
        on_present: called as on_present(runner, prompt) before each prompt
    """

    def __init__(self, clock=None, answer='submit', consent=0, precondition_choices=None,
                 on_present=None):
        super().__init__()
        self.clock = clock or FakeClock()
        self.answer = answer
        self.consent = consent
        self.precondition_choices = list(precondition_choices or [])
        self.on_present = on_present
        self.instructions = []
        self.statuses = []
        self.overlays = []
        self.prompts = []
        self.progress = []
        self.progress_visible = []
        self.fullscreen_requests = 0
        self.stimuli = 0
        self.masks = 0

    def preload(self, paths):
        return []

    def show_instruction(self, text, buttons, should_abort):
        self.instructions.append(text)
        if len(buttons) == 2:
            return self.consent
        return 0

    def show_precondition(self, status):
        self.statuses.append(status)
        if self.precondition_choices:
            return self.precondition_choices.pop(0)
        return status.choices[0]

    def enter_fullscreen(self):
        self.fullscreen_requests += 1
        return True

    def show_stimulus(self, screen, should_abort):
        self.stimuli += 1
        self.clock.advance(screen.duration_ms / 1000.0)

    def show_mask(self, screen, should_abort):
        self.masks += 1
        self.clock.advance(screen.duration_ms / 1000.0)

    def present(self, prompt, slot, should_abort):
        self.prompts.append(prompt)
        slot.start(self.clock.getTime())
        if self.on_present is not None:
            self.on_present(self, prompt)
        if should_abort() or self.answer == 'timeout':
            return
        self.clock.advance(0.8)
        slot.submit(self.values_for(prompt), self.clock.getTime())

    @staticmethod
    def values_for(prompt):
        if isinstance(prompt, ChoicePrompt):
            return {'choice': prompt.options[0], 'index': 0}
        if isinstance(prompt, SliderPairPrompt):
            return {'rating': 60, 'confidence': 80}
        if isinstance(prompt, CountGridPrompt):
            return {name: 2 for name in prompt.fields}
        raise TypeError(prompt)

    def collect_demographics(self, fields, title):
        return {'age': '30', 'gender': 'Female'}

    def show_overlay(self, text, terminal=False):
        self.overlays.append(text)

    def show_progress(self, visible):
        self.progress_visible.append(visible)

    def set_progress(self, completed, total):
        self.progress.append((completed, total))
