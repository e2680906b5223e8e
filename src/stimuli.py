"""Stimulus catalog helpers for the face experiments.

Image naming convention: {race}_{gender}_{smile}_{id}_{size}.{ext}
Example: black_male_smile_01_big.jpeg
- big images are .jpeg, small images are .png
- individual ids look like 'black_male_01'
"""
from __future__ import annotations

import os
from typing import Iterable

from PIL import Image, ImageDraw

from experiment_types import Individual


def smile_label(smile: bool) -> str:
    return 'smile' if smile else 'nosmile'


def image_name(individual_id: str, size: str, smile: bool) -> str:
    """Build the image name (without extension) for one stimulus.

    Args:
        individual_id: '{race}_{gender}_{id}', e.g. 'black_male_01'
        size: size condition ('big' or 'small')
        smile: expression condition

    Returns:
        e.g. 'black_male_smile_01_big'
    """
    race, gender, id_num = individual_id.split('_')
    return f"{race}_{gender}_{smile_label(smile)}_{id_num}_{size}"


def image_path(individual_id: str, size: str, smile: bool, base: str) -> str:
    ext = 'jpeg' if size == 'big' else 'png'
    return os.path.join(base, f"{image_name(individual_id, size, smile)}.{ext}")


def all_image_paths(
    individuals: Iterable[Individual],
    sizes: Iterable[str],
    base: str,
) -> list[str]:
    """Every image path a session may show, for preloading.

    Individuals with ``has_smile`` set to False only contribute their
    no-smile version.
    """
    sizes = list(sizes)
    paths: list[str] = []
    for individual in individuals:
        for size in sizes:
            paths.append(image_path(individual['id'], size, False, base))
            if individual.get('has_smile', True):
                paths.append(image_path(individual['id'], size, True, base))
    return paths


def make_placeholder_face(label: str, size_px: int, smile: bool, path: str) -> str:
    """Draw a simple placeholder face and save it to ``path``.

    Used for the generated practice stimulus and for stimulus files that
    failed to preload.

    Returns:
        The written path.
    """
    img = Image.new('RGB', (size_px, size_px), (128, 128, 128))
    draw = ImageDraw.Draw(img)
    cx = cy = size_px / 2
    r = size_px * 0.35
    draw.ellipse((cx - r, cy - r, cx + r, cy + r), fill=(160, 160, 160))

    eye_y = cy - r * 0.15
    eye_dx = r * 0.3
    eye_r = r * 0.08
    for ex in (cx - eye_dx, cx + eye_dx):
        draw.ellipse((ex - eye_r, eye_y - eye_r, ex + eye_r, eye_y + eye_r), fill=(51, 51, 51))

    line_w = max(2, int(size_px * 0.02))
    mouth_y = cy + r * 0.3
    if smile:
        mr = r * 0.25
        my = mouth_y - r * 0.1
        draw.arc((cx - mr, my - mr, cx + mr, my + mr), start=18, end=162,
                 fill=(51, 51, 51), width=line_w)
    else:
        draw.line((cx - r * 0.2, mouth_y, cx + r * 0.2, mouth_y),
                  fill=(51, 51, 51), width=line_w)

    # Default bitmap font is ~6px per glyph
    draw.text((cx - len(label) * 3, size_px - 20), label, fill=(255, 255, 255))

    os.makedirs(os.path.dirname(path) or '.', exist_ok=True)
    img.save(path)
    return path
