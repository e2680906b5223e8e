"""Tests for configuration loading and path utilities.

Covers path resolution, config loading and design merging without opening a window.
"""
import json
import os
import sys
import tempfile
import warnings

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import config_loader  # noqa: E402
from config_loader import (  # noqa: E402
    LAYOUT_DEFAULT_PATH,
    design_config,
    get_base_dir,
    get_output_dir,
    load_layout,
    load_sequence,
)
from path_utils import (  # noqa: E402
    file_exists_nonempty,
    find_missing,
    is_stimuli_dir_empty,
    resolve_path,
)


def test_base_dir_exists():
    """Base directory can be determined and exists."""
    base_dir = get_base_dir()
    assert base_dir is not None, "BASE_DIR should not be None"
    assert os.path.isdir(base_dir), f"BASE_DIR should be a directory: {base_dir}"


def test_output_dir_parent_exists():
    output_dir = get_output_dir()
    assert os.path.isdir(os.path.dirname(output_dir)), "Output dir parent should exist"


def test_is_stimuli_dir_empty():
    assert is_stimuli_dir_empty("/non/existent/path"), "Non-existent dir should be empty"

    with tempfile.TemporaryDirectory() as tmpdir:
        with open(os.path.join(tmpdir, '.gitignore'), 'w') as f:
            f.write("*\n")
        assert is_stimuli_dir_empty(tmpdir), "Dir with only .gitignore should be empty"

    with tempfile.TemporaryDirectory() as tmpdir:
        with open(os.path.join(tmpdir, 'face.png'), 'w') as f:
            f.write("dummy")
        assert not is_stimuli_dir_empty(tmpdir), "Dir with files should not be empty"


def test_resolve_path_configs():
    assert os.path.exists(resolve_path('configs/sequence.json'))
    assert os.path.exists(resolve_path('configs/layout.json'))


def test_file_exists_nonempty_and_find_missing():
    assert not file_exists_nonempty("/non/existent/file.txt")

    with tempfile.NamedTemporaryFile(mode='w', delete=False, suffix='.png') as f:
        empty_file = f.name
    with tempfile.NamedTemporaryFile(mode='w', delete=False, suffix='.png') as f:
        f.write("content")
        nonempty_file = f.name
    try:
        assert not file_exists_nonempty(empty_file), "Empty file should return False"
        assert file_exists_nonempty(nonempty_file), "Non-empty file should return True"
        assert find_missing([nonempty_file, empty_file, '/nope.png']) == [empty_file, '/nope.png']
    finally:
        os.unlink(empty_file)
        os.unlink(nonempty_file)


def test_load_sequence():
    sequence = load_sequence()
    assert set(sequence['experiments']) == {'attention', 'memory', 'traits'}
    assert sequence['default_experiment'] in sequence['experiments']
    assert sequence['fidelity']['poll_interval_ms'] == 500
    assert len(sequence['individuals']) == 16


def test_load_sequence_missing_file_raises():
    try:
        load_sequence('/non/existent/sequence.json')
    except RuntimeError as e:
        assert 'not found' in str(e)
    else:
        raise AssertionError("missing config should raise RuntimeError")


def test_design_config_merges_shared_keys():
    sequence = load_sequence()
    design = design_config(sequence, 'memory')
    assert design['individuals'] == sequence['individuals']
    # Shared texts plus the variant's own
    assert 'consent' in design['texts']
    assert 'pre_round_race' in design['texts']
    assert design['dataset_key'] == 'rounds'


def test_design_config_unknown_experiment():
    try:
        design_config(load_sequence(), 'nope')
    except KeyError:
        pass
    else:
        raise AssertionError("unknown experiment should raise KeyError")


def test_layout_parameter_merging():
    """All default layout keys are present after loading."""
    with open(LAYOUT_DEFAULT_PATH, 'r', encoding='utf-8') as f:
        default_layout = json.load(f)
    loaded_layout = load_layout()
    for key in default_layout:
        assert key in loaded_layout, f"Default key '{key}' should be present in loaded layout"


def test_malformed_override_warns_and_keeps_defaults(monkeypatch):
    with tempfile.TemporaryDirectory() as tmpdir:
        override = os.path.join(tmpdir, 'layout.json')
        with open(override, 'w', encoding='utf-8') as f:
            f.write("{not json")
        monkeypatch.setattr(config_loader, 'get_exe_override_path', lambda rel: override)
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter('always')
            layout = load_layout()
        assert layout['font_main'] == 'Arial'
        assert any('malformed' in str(w.message) for w in caught)


def test_override_takes_precedence(monkeypatch):
    with tempfile.TemporaryDirectory() as tmpdir:
        override = os.path.join(tmpdir, 'layout.json')
        with open(override, 'w', encoding='utf-8') as f:
            json.dump({'text_height': 40}, f)
        monkeypatch.setattr(config_loader, 'get_exe_override_path', lambda rel: override)
        layout = load_layout()
        assert layout['text_height'] == 40
        assert layout['font_main'] == 'Arial'
