"""Path resolution and file utilities for the face experiments.

This module provides path resolution with support for:
- PyInstaller frozen builds
- Empty bundled stimuli directory fallback
- Preload checks for stimulus images
"""
from __future__ import annotations

import os
import sys
from typing import Iterable

from config_loader import BASE_DIR


def is_stimuli_dir_empty(dirpath: str) -> bool:
    """Check if stimuli directory is empty or contains only .gitignore.

    Args:
        dirpath: Path to the stimuli directory

    Returns:
        True if directory is empty or only contains .gitignore, False otherwise
    """
    if not os.path.isdir(dirpath):
        return True
    entries = os.listdir(dirpath)
    return len(entries) == 0 or (len(entries) == 1 and entries[0] == '.gitignore')


def resolve_path(p: str) -> str:
    """Resolve a possibly relative path with stimuli fallback.

    Priority:
    1. If absolute path exists, use it
    2. Try BASE_DIR / path (bundled resources or dev mode)
       - For stimuli paths in frozen builds: if the bundled stimuli directory
         is empty, fall back to the exe directory
    3. Try executable directory / path

    Args:
        p: Path to resolve (absolute or relative)

    Returns:
        Resolved absolute path (first candidate if nothing exists)
    """
    if os.path.isabs(p) and os.path.exists(p):
        return p

    candidate = os.path.join(BASE_DIR, p)
    frozen = getattr(sys, 'frozen', False)
    exe_dir = os.path.dirname(sys.executable)

    if frozen and p.startswith('stimuli'):
        if is_stimuli_dir_empty(os.path.join(BASE_DIR, 'stimuli')):
            fallback = os.path.join(exe_dir, p)
            if os.path.exists(fallback):
                return fallback

    if os.path.exists(candidate):
        return candidate

    if frozen:
        fallback = os.path.join(exe_dir, p)
        if os.path.exists(fallback):
            return fallback

    return candidate


def file_exists_nonempty(path: str) -> bool:
    """Check if a file exists and is not empty.

    Args:
        path: Path to check (will be resolved via resolve_path)
    """
    p = resolve_path(path)
    return os.path.isfile(p) and os.path.getsize(p) > 0


def find_missing(paths: Iterable[str]) -> list[str]:
    """Return the paths that do not resolve to a non-empty file, in input order."""
    return [p for p in paths if not file_exists_nonempty(p)]
