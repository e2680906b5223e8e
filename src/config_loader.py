"""Configuration loader for the face experiments.

Separately loads sequence (configs/sequence.json) and layout (configs/layout.json),
with external override precedence for layout when running as a packaged exe.
"""
from __future__ import annotations

import json
import os
import sys
from typing import cast


def get_base_dir() -> str:
    """Return base directory for read-only resources (configs/stimuli).

    Note: In PyInstaller onefile, resources are unpacked to a temporary
    extraction directory (sys._MEIPASS). That location is read-only and may be
    deleted after exit, so DO NOT write output files there.
    """
    meipass = getattr(sys, '_MEIPASS', None)
    if meipass and os.path.isdir(meipass):
        return meipass
    # Onedir: use the executable directory so bundled folders like 'configs/' work
    if getattr(sys, 'frozen', False):
        return os.path.dirname(sys.executable)
    # Normal dev mode: project root (src/..)
    return os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))


def get_output_dir() -> str:
    """Return a persistent, user-writable directory for saving results and logs.

    - For frozen apps (onefile/onedir), use the directory next to the executable.
    - For dev, use the project-level 'data' directory.
    """
    if getattr(sys, 'frozen', False):
        return os.path.join(os.path.dirname(sys.executable), 'data')
    return os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'data'))


def get_exe_override_path(rel_path: str) -> str | None:
    """When running as a frozen exe, return the override path next to the exe.

    Example: rel_path='configs/layout.json' -> '<exe_dir>/configs/layout.json'
    Returns None if not frozen.
    """
    if getattr(sys, 'frozen', False):
        return os.path.join(os.path.dirname(sys.executable), rel_path)
    return None


# Module-level constants
BASE_DIR = get_base_dir()
SEQUENCE_DEFAULT_PATH = os.path.join(BASE_DIR, 'configs', 'sequence.json')
LAYOUT_DEFAULT_PATH = os.path.join(BASE_DIR, 'configs', 'layout.json')


from experiment_types import DesignConfig, LayoutConfig, SequenceConfig  # noqa: E402


def _read_json(path: str) -> dict:
    if not os.path.exists(path):
        raise RuntimeError(
            f"Default configuration file not found: {path}\n"
            "This file is required; make sure the project ships its configs/ folder."
        )
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def load_sequence(path: str | None = None) -> SequenceConfig:
    """Load sequence.json configuration.

    Returns:
        SequenceConfig: experiment designs, fidelity tolerances and export settings.
    """
    data = _read_json(path or SEQUENCE_DEFAULT_PATH)
    return cast(SequenceConfig, data)


def load_layout(path: str | None = None) -> LayoutConfig:
    """Load layout.json with external-override precedence and parameter merging.

    Search order:
    1) Load defaults from <BASE_DIR>/configs/layout.json (must exist)
    2) If running as frozen exe, load overrides from <exe_dir>/configs/layout.json
    3) Merge: override parameters take precedence, missing ones use defaults
    """
    layout = cast(LayoutConfig, _read_json(path or LAYOUT_DEFAULT_PATH))

    override_path = get_exe_override_path(os.path.join('configs', 'layout.json'))
    if override_path and os.path.exists(override_path):
        try:
            with open(override_path, 'r', encoding='utf-8') as f:
                overrides = cast(LayoutConfig, json.load(f))
            layout.update(overrides)
        except (OSError, ValueError) as e:
            # Malformed override: warn and keep defaults
            import warnings
            warnings.warn(
                f"Layout override is malformed, using defaults: {override_path}\nError: {e}"
            )

    return layout


def design_config(sequence: SequenceConfig, experiment: str) -> DesignConfig:
    """Return the merged design config for one experiment variant.

    Shared keys (individuals, texts) are copied in unless the variant
    defines its own.

    Raises:
        KeyError: unknown experiment name
    """
    experiments = sequence.get('experiments', {})
    if experiment not in experiments:
        raise KeyError(
            f"Unknown experiment '{experiment}'; expected one of {sorted(experiments)}"
        )
    design = cast(DesignConfig, dict(experiments[experiment]))
    design.setdefault('individuals', list(sequence.get('individuals', [])))
    texts = dict(sequence.get('texts', {}))
    texts.update(design.get('texts', {}))
    design['texts'] = texts
    return design
