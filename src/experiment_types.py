"""Typed structures for face experiment configuration and exported records.

Defines TypedDict schemas for:
- Individual / PracticeStimulus: stimulus catalog entries
- DesignConfig: one experiment variant (attention, memory, traits)
- FidelityConfig / ExportConfig: display-fidelity and export settings
- SequenceConfig / LayoutConfig: the two configuration files
- FidelityEventRecord / ZoomTracking / ExportPayloadDict: exported data
"""
from __future__ import annotations

from typing import Any, TypedDict


class Individual(TypedDict, total=False):
    id: str
    race: str
    gender: str
    has_smile: bool

class PracticeStimulus(TypedDict):
    race: str
    gender: str
    id: str
    smile: bool
    size: str

class GridConfig(TypedDict, total=False):
    rows: int
    cols: int
    total_images: int
    category_min: int
    binary_min: int
    practice_smile_target: int

class DesignConfig(TypedDict, total=False):
    tag: str
    kind: str
    dataset_key: str
    image_path: str
    practice_image_path: str
    sizes: dict[str, list[int]]
    size_levels: list[str]
    repetitions: int
    exposure_ms: int
    mask_ms: int
    prompt_timeout_ms: int
    pre_instruction: str
    races: list[str]
    traits: list[str]
    question_types: list[str]
    grid: GridConfig
    practice: PracticeStimulus
    practice_individuals: list[Individual]
    individuals: list[Individual]
    texts: dict[str, str]

class FidelityConfig(TypedDict, total=False):
    drift_tolerance: float
    precondition_tolerance_pct: float
    poll_interval_ms: int
    bypass_min_attempts: int

class ExportConfig(TypedDict, total=False):
    endpoint: str
    timeout_seconds: float
    keep_local_copy: bool

class SequenceConfig(TypedDict, total=False):
    default_experiment: str
    individuals: list[Individual]
    experiments: dict[str, DesignConfig]
    fidelity: FidelityConfig
    export: ExportConfig
    texts: dict[str, str]
    demographic_fields: dict[str, Any]

class LayoutConfig(TypedDict, total=False):
    # Fonts
    font_main: str
    text_height: float
    # Instruction screen
    instruction_wrap_width: int
    instruction_button_y: int
    instruction_button_delay: float
    # Buttons
    button_width: int
    button_height: int
    button_gap: int
    button_label_height: int
    button_fill_hover: object
    button_fill_normal: object
    button_fill_disabled: object
    # Stimulus grid
    grid_gap: int
    fixation_height: int
    # Prompts
    question_y: int
    slider_width: int
    slider_height: int
    count_field_gap: int
    # Progress bar
    progress_y: int
    progress_width: int
    progress_height: int
    # Overlays
    overlay_fill: object
    # Misc
    debug_mode: bool

class FidelityEventRecord(TypedDict):
    timestamp: str
    approved_dpr: float
    current_dpr: float
    detected_zoom: int

class ZoomTracking(TypedDict):
    zoom_check_bypassed: bool
    zoom_check_attempts: int
    approved_dpr: float | None
    initial_dpr: float | None
    zoom_changes_count: int
    zoom_changes: list[FidelityEventRecord]
    terminated_due_to_zoom: bool

class ExportPayloadDict(TypedDict, total=False):
    experiment: str
    participant_id: str
    timestamp: str
    demographics: dict[str, Any]
    zoom_tracking: ZoomTracking
    trials: list[dict[str, Any]]
    rounds: list[dict[str, Any]]
