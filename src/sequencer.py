"""Trial/round sequencer: screen lists and outcome records for one presentation.

One reusable engine drives three experiment designs:

- AttentionDesign: one face, then race and smile questions in random order
- MemoryDesign: a grid of faces, then a count-entry question
- TraitsDesign: one face rated on several traits with rating + confidence sliders

Flow of one presentation:
1. ``design.plan(spec)`` randomizes the dimension order and the option order
   within each choice prompt; both are kept in the outcome.
2. ``design.screens(spec, plan)`` emits instruction / stimulus / mask screens,
   one prompt screen per dimension, then the record step.
3. The record step reads each prompt result from the presentation's
   ``PresentationRecord`` and builds one immutable ``PresentationOutcome``.
"""
from __future__ import annotations

import random
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Mapping, Protocol, Sequence, Union

from psychopy import logging

from assignment import (
    GridSelection,
    assign_individuals,
    balanced_conditions,
    practice_grid,
    select_grid,
)
from experiment_types import DesignConfig
from responses import (
    ChoicePrompt,
    CountGridPrompt,
    PresentationRecord,
    Prompt,
    PromptOutcome,
    PromptSlot,
    SliderPairPrompt,
)
from stimuli import all_image_paths, image_name, image_path, smile_label

RACE_LABELS = {'asian': 'Asian', 'black': 'Black', 'hispanic': 'Hispanic', 'white': 'White'}
SMILE_COUNT_LABELS = {'smiling': 'Smiling', 'not_smiling': 'Not Smiling'}
SMILE_CHOICES = ('Yes', 'No')
DEFAULT_TRAITS = ('trustworthy', 'competent', 'attractive', 'friendly')


# =============================================================================
# DATA TYPES
# =============================================================================

@dataclass(frozen=True)
class PresentationSpec:
    """Immutable configuration of one stimulus showing."""
    is_practice: bool
    size: str
    individual_id: str | None = None
    race: str | None = None
    gender: str | None = None
    smile: bool | None = None
    question_type: str | None = None
    image_path: str | None = None
    grid: GridSelection | None = None

    @property
    def image_name(self) -> str | None:
        if self.individual_id is None or self.smile is None:
            return None
        return image_name(self.individual_id, self.size, self.smile)


@dataclass(frozen=True)
class PresentationPlan:
    """Randomized orders for one presentation."""
    dimension_order: tuple[str, ...]
    option_orders: Mapping[str, tuple[str, ...]]
    prompts: Mapping[str, Prompt]


@dataclass(frozen=True)
class PresentationOutcome:
    spec: PresentationSpec
    number: Union[int, str]
    plan: PresentationPlan
    responses: Mapping[str, PromptOutcome]
    row: Mapping[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return dict(self.row)


# =============================================================================
# SCREENS
# =============================================================================

@dataclass(frozen=True)
class InstructionScreen:
    text: str
    button: str = 'Continue'


@dataclass(frozen=True)
class StimulusScreen:
    """Fixed-duration exposure; no input accepted."""
    images: tuple[tuple[str | None, tuple[int, int]], ...]
    duration_ms: int
    rows: int = 1
    cols: int = 1
    placeholder_label: str = ''
    smiles: tuple[bool, ...] = ()


@dataclass(frozen=True)
class MaskScreen:
    duration_ms: int


@dataclass(frozen=True)
class PromptScreen:
    prompt: Prompt
    timeout_ms: int


@dataclass(frozen=True)
class RecordStep:
    pass


Screen = Union[InstructionScreen, StimulusScreen, MaskScreen, PromptScreen, RecordStep]


class PresentationRunner(Protocol):
    """The screen-level operations the sequencer needs."""

    def show_instruction(
        self, text: str, buttons: Sequence[str], should_abort: Callable[[], bool]
    ) -> int | None: ...

    def show_stimulus(self, screen: StimulusScreen, should_abort: Callable[[], bool]) -> None: ...

    def show_mask(self, screen: MaskScreen, should_abort: Callable[[], bool]) -> None: ...

    def present(
        self, prompt: Prompt, slot: PromptSlot, should_abort: Callable[[], bool]
    ) -> None: ...


def _never() -> bool:
    return False


# =============================================================================
# DESIGNS
# =============================================================================

class PresentationDesign:
    """Base class: shared config handling and the default screen layout."""

    kind = ''

    def __init__(self, config: DesignConfig, rng: random.Random | None = None) -> None:
        self.config = config
        self.rng = rng or random.Random()
        self.tag = config.get('tag', self.kind)
        self.dataset_key = config.get('dataset_key', 'trials')
        self.sizes: dict[str, tuple[int, int]] = {
            name: (int(dims[0]), int(dims[1]))
            for name, dims in config.get('sizes', {'big': [256, 256], 'small': [104, 104]}).items()
        }
        self.size_levels: list[str] = list(config.get('size_levels', list(self.sizes)))
        self.repetitions = int(config.get('repetitions', 1))
        self.exposure_ms = int(config.get('exposure_ms', 0))
        self.mask_ms = int(config.get('mask_ms', 0))
        self.prompt_timeout_ms = int(config.get('prompt_timeout_ms', 10000))
        self.image_base = config.get('image_path', 'stimuli/images/')
        self.individuals = list(config.get('individuals', []))
        self.texts = dict(config.get('texts', {}))

    # -- generation -----------------------------------------------------------

    def practice_specs(self) -> list[PresentationSpec]:
        raise NotImplementedError

    def main_specs(self) -> list[PresentationSpec]:
        raise NotImplementedError

    def image_paths(self) -> list[str]:
        """Main-block stimulus files, for preloading."""
        return all_image_paths(self.individuals, self.size_levels, self.image_base)

    # -- per presentation -----------------------------------------------------

    def plan(self, spec: PresentationSpec) -> PresentationPlan:
        raise NotImplementedError

    def pre_instruction(self, spec: PresentationSpec) -> InstructionScreen | None:
        text = self.config.get('pre_instruction')
        return InstructionScreen(text) if text else None

    def stimulus_screen(self, spec: PresentationSpec) -> StimulusScreen:
        return StimulusScreen(
            images=((spec.image_path, self.sizes[spec.size]),),
            duration_ms=self.exposure_ms,
            placeholder_label='PRACTICE' if spec.is_practice else '',
            smiles=(bool(spec.smile),),
        )

    def screens(self, spec: PresentationSpec, plan: PresentationPlan) -> list[Screen]:
        screens: list[Screen] = []
        pre = self.pre_instruction(spec)
        if pre is not None:
            screens.append(pre)
        if self.exposure_ms > 0:
            screens.append(self.stimulus_screen(spec))
        if self.mask_ms > 0:
            screens.append(MaskScreen(self.mask_ms))
        for name in plan.dimension_order:
            screens.append(PromptScreen(plan.prompts[name], self.prompt_timeout_ms))
        screens.append(RecordStep())
        return screens

    def record(
        self,
        spec: PresentationSpec,
        plan: PresentationPlan,
        record: PresentationRecord,
        number: Union[int, str],
    ) -> dict[str, Any]:
        raise NotImplementedError

    # -- helpers --------------------------------------------------------------

    def _single_face_specs(self) -> list[PresentationSpec]:
        trials = assign_individuals(
            self.individuals,
            {'size': self.size_levels, 'smile': [True, False]},
            self.repetitions,
            self.rng,
        )
        return [
            PresentationSpec(
                is_practice=False,
                size=t['size'],
                individual_id=t['individual']['id'],
                race=t['individual']['race'],
                gender=t['individual']['gender'],
                smile=t['smile'],
                image_path=image_path(t['individual']['id'], t['size'], t['smile'], self.image_base),
            )
            for t in trials
        ]

    def _practice_face_spec(self) -> PresentationSpec:
        p = self.config['practice']
        # Practice face is a generated placeholder (image_path None)
        return PresentationSpec(
            is_practice=True,
            size=p['size'],
            individual_id=f"{p['race']}_{p['gender']}_{p['id']}",
            race=p['race'],
            gender=p['gender'],
            smile=p['smile'],
        )

    def _face_row(self, spec: PresentationSpec, number: Union[int, str]) -> dict[str, Any]:
        return {
            'trial_number': number,
            'image_name': spec.image_name,
            'true_race': spec.race,
            'true_gender': spec.gender,
            'size_condition': spec.size,
            'smile_condition': smile_label(bool(spec.smile)),
        }


class AttentionDesign(PresentationDesign):
    """Race and smile detection for single faces at two sizes."""

    kind = 'attention'

    def practice_specs(self) -> list[PresentationSpec]:
        return [self._practice_face_spec()]

    def main_specs(self) -> list[PresentationSpec]:
        return self._single_face_specs()

    def plan(self, spec: PresentationSpec) -> PresentationPlan:
        race_first = self.rng.random() < 0.5
        races = self.config.get('races', list(RACE_LABELS))
        race_options = [RACE_LABELS.get(r, r.title()) for r in races]
        self.rng.shuffle(race_options)
        smile_options = list(SMILE_CHOICES)
        self.rng.shuffle(smile_options)
        prompts = {
            'race': ChoicePrompt('race', 'What is the race of the person shown?', tuple(race_options)),
            'smile': ChoicePrompt('smile', 'Was the person shown smiling?', tuple(smile_options)),
        }
        return PresentationPlan(
            dimension_order=('race', 'smile') if race_first else ('smile', 'race'),
            option_orders={'race': tuple(race_options), 'smile': tuple(smile_options)},
            prompts=prompts,
        )

    def record(self, spec, plan, record, number):
        race = record.outcome('race')
        smile = record.outcome('smile')
        race_response = race.values['choice'].lower() if race.values else None
        smile_response = smile.values['choice'].lower() if smile.values else None

        row = self._face_row(spec, number)
        row.update({
            'question_order': f"{plan.dimension_order[0]}_first",
            'race_options_order': ','.join(o.lower() for o in plan.option_orders['race']),
            'smile_options_order': ','.join(o.lower() for o in plan.option_orders['smile']),
            'race_response': race_response,
            'race_rt': race.elapsed_ms,
            'race_correct': None if race_response is None else race_response == spec.race,
            'smile_response': smile_response,
            'smile_rt': smile.elapsed_ms,
            'smile_correct': (
                None if smile_response is None else (smile_response == 'yes') == bool(spec.smile)
            ),
            'is_practice': spec.is_practice,
        })
        return row


class MemoryDesign(PresentationDesign):
    """Grid of faces, then count how many of each race or expression were shown."""

    kind = 'memory'

    def __init__(self, config: DesignConfig, rng: random.Random | None = None) -> None:
        super().__init__(config, rng)
        grid = config.get('grid', {})
        self.rows = int(grid.get('rows', 2))
        self.cols = int(grid.get('cols', 4))
        self.grid_size = int(grid.get('total_images', self.rows * self.cols))
        self.category_min = int(grid.get('category_min', 1))
        self.binary_min = int(grid.get('binary_min', 2))
        self.practice_smile_target = int(grid.get('practice_smile_target', 4))
        self.races = list(config.get('races', list(RACE_LABELS)))
        self.question_types = list(config.get('question_types', ['race', 'smile']))
        self.practice_base = config.get('practice_image_path', 'stimuli/practice_images/')
        self.practice_individuals = list(config.get('practice_individuals', []))

    def practice_specs(self) -> list[PresentationSpec]:
        size = self.size_levels[0]
        grid = practice_grid(
            self.practice_individuals, size, self.races, self.practice_base,
            smile_target=self.practice_smile_target, rng=self.rng,
        )
        return [PresentationSpec(is_practice=True, size=size, question_type='race', grid=grid)]

    def main_specs(self) -> list[PresentationSpec]:
        rounds = balanced_conditions(
            {'size': self.size_levels, 'question_type': self.question_types},
            self.repetitions,
            self.rng,
        )
        return [
            PresentationSpec(
                is_practice=False,
                size=r['size'],
                question_type=r['question_type'],
                grid=select_grid(
                    self.individuals, self.grid_size, r['size'], self.races, self.image_base,
                    category_min=self.category_min, binary_min=self.binary_min, rng=self.rng,
                ),
            )
            for r in rounds
        ]

    def image_paths(self) -> list[str]:
        paths = all_image_paths(self.practice_individuals, self.size_levels, self.practice_base)
        return paths + super().image_paths()

    def _fields(self, question_type: str) -> dict[str, str]:
        if question_type == 'race':
            return {r: RACE_LABELS.get(r, r.title()) for r in self.races}
        return dict(SMILE_COUNT_LABELS)

    def plan(self, spec: PresentationSpec) -> PresentationPlan:
        qtype = spec.question_type or 'race'
        labels = self._fields(qtype)
        fields = list(labels)
        self.rng.shuffle(fields)
        if qtype == 'race':
            question = 'How many faces of each race did you see?'
        else:
            question = 'How many faces were smiling vs. not smiling?'
        prompt = CountGridPrompt(
            name=qtype,
            question=question,
            fields=tuple(fields),
            labels=labels,
            expected_total=self.grid_size,
            max_value=self.grid_size,
        )
        return PresentationPlan(
            dimension_order=(qtype,),
            option_orders={qtype: tuple(fields)},
            prompts={qtype: prompt},
        )

    def pre_instruction(self, spec: PresentationSpec) -> InstructionScreen | None:
        text = self.texts.get(f"pre_round_{spec.question_type}")
        if not text:
            return None
        return InstructionScreen(text, self.texts.get('pre_round_button', 'Start'))

    def stimulus_screen(self, spec: PresentationSpec) -> StimulusScreen:
        grid = spec.grid
        if grid is None:
            raise ValueError(f"Memory round {spec.question_type!r} has no grid assigned")
        dims = self.sizes[spec.size]
        return StimulusScreen(
            images=tuple((img.image_path, dims) for img in grid.images),
            duration_ms=self.exposure_ms,
            rows=self.rows,
            cols=self.cols,
            smiles=tuple(img.smile for img in grid.images),
        )

    def record(self, spec, plan, record, number):
        qtype = spec.question_type or 'race'
        grid = spec.grid
        composition = dict(grid.composition) if grid is not None else {}
        outcome = record.outcome(qtype)
        values = outcome.values or {}

        row: dict[str, Any] = {
            'round_number': number,
            'size_condition': spec.size,
            'question_type': qtype,
            'is_practice': spec.is_practice,
            'grid_order': grid.grid_order if grid is not None else '',
            'input_order': ','.join(plan.option_orders[qtype]),
            'response_order': ','.join(record.response_order(qtype)),
        }
        for race in self.races:
            row[f"actual_{race}"] = composition.get(race, 0)
        row['actual_smiling'] = composition.get('smiling', 0)
        row['actual_not_smiling'] = composition.get('not_smiling', 0)

        for name in self._fields(qtype):
            response = _as_count(values.get(name))
            actual = composition.get(name, 0)
            row[f"{name}_response"] = response
            row[f"{name}_error"] = response - actual
            row[f"{name}_correct"] = response == actual
        row['response_rt'] = outcome.elapsed_ms
        row['timed_out'] = outcome.timed_out
        return row


def _as_count(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


class TraitsDesign(PresentationDesign):
    """Subjective trait ratings with confidence, one screen per trait."""

    kind = 'traits'

    def __init__(self, config: DesignConfig, rng: random.Random | None = None) -> None:
        super().__init__(config, rng)
        self.traits = list(config.get('traits', DEFAULT_TRAITS))

    def practice_specs(self) -> list[PresentationSpec]:
        return [self._practice_face_spec()]

    def main_specs(self) -> list[PresentationSpec]:
        return self._single_face_specs()

    def plan(self, spec: PresentationSpec) -> PresentationPlan:
        order = list(self.traits)
        self.rng.shuffle(order)
        prompts = {
            trait: SliderPairPrompt(
                name=trait,
                question=f"How {trait} do you think most people would consider this person?",
                low_anchor=f"Not at all {trait}",
                high_anchor=f"Extremely {trait}",
                image_path=spec.image_path,
                image_size=self.sizes[spec.size],
            )
            for trait in order
        }
        return PresentationPlan(
            dimension_order=tuple(order),
            option_orders={},
            prompts=prompts,
        )

    def record(self, spec, plan, record, number):
        row = self._face_row(spec, number)
        row['trait_order'] = ','.join(plan.dimension_order)
        for trait in self.traits:
            outcome = record.outcome(trait)
            values = outcome.values or {}
            row[f"{trait}_rating"] = values.get('rating')
            row[f"{trait}_confidence"] = values.get('confidence')
            row[f"{trait}_rt"] = outcome.elapsed_ms
        row['is_practice'] = spec.is_practice
        return row


DESIGNS: dict[str, type[PresentationDesign]] = {
    AttentionDesign.kind: AttentionDesign,
    MemoryDesign.kind: MemoryDesign,
    TraitsDesign.kind: TraitsDesign,
}


def build_design(config: DesignConfig, rng: random.Random | None = None) -> PresentationDesign:
    kind = config.get('kind', '')
    if kind not in DESIGNS:
        raise ValueError(f"Unknown design kind '{kind}'; expected one of {sorted(DESIGNS)}")
    return DESIGNS[kind](config, rng)


# =============================================================================
# SEQUENCER
# =============================================================================

class TrialSequencer:
    """Runs presentations of one design and counts completed main presentations."""

    def __init__(self, design: PresentationDesign) -> None:
        self.design = design
        self.completed = 0

    def build_screens(self, spec: PresentationSpec) -> tuple[PresentationPlan, list[Screen]]:
        plan = self.design.plan(spec)
        return plan, self.design.screens(spec, plan)

    def run(
        self,
        spec: PresentationSpec,
        runner: PresentationRunner,
        should_abort: Callable[[], bool] = _never,
    ) -> PresentationOutcome | None:
        """Show every screen of one presentation.

        Returns:
            The outcome, or None if ``should_abort`` became true first.
        """
        plan, screens = self.build_screens(spec)
        record = PresentationRecord()
        for screen in screens:
            if should_abort():
                return None
            if isinstance(screen, InstructionScreen):
                runner.show_instruction(screen.text, [screen.button], should_abort)
            elif isinstance(screen, StimulusScreen):
                runner.show_stimulus(screen, should_abort)
            elif isinstance(screen, MaskScreen):
                runner.show_mask(screen, should_abort)
            elif isinstance(screen, PromptScreen):
                slot = record.open_slot(screen.prompt.name, screen.timeout_ms)
                runner.present(screen.prompt, slot, should_abort)
                if not slot.settled and not should_abort():
                    slot.expire(keep_partial=getattr(screen.prompt, 'keep_partial_on_timeout', False))
            elif isinstance(screen, RecordStep):
                return self.record(spec, plan, record, should_abort)
        return None

    def record(
        self,
        spec: PresentationSpec,
        plan: PresentationPlan,
        record: PresentationRecord,
        should_abort: Callable[[], bool] = _never,
    ) -> PresentationOutcome | None:
        if should_abort():
            return None
        if spec.is_practice:
            number: Union[int, str] = 'practice'
        else:
            self.completed += 1
            number = self.completed
        row = self.design.record(spec, plan, record, number)
        logging.data(f"{self.design.tag} presentation {number} recorded")
        return PresentationOutcome(
            spec=spec,
            number=number,
            plan=plan,
            responses=MappingProxyType({name: record.outcome(name) for name in record.prompt_order}),
            row=MappingProxyType(row),
        )
