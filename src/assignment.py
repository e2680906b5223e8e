"""Balanced stimulus assignment for the face experiments.

Two kinds of balance are enforced:

- Across a block: every condition combination (e.g. size x expression) appears
  the same number of times, and each individual is used once per block. The
  pool is shuffled and sliced into condition-sized chunks instead of being
  sampled independently, which would break equal usage.
- Within a grid: every category (race) appears at least ``category_min`` times
  and both sides of the binary attribute (smiling / not smiling) appear at
  least ``binary_min`` times. The binary attribute is assigned near-randomly
  and then repaired by flipping assignments, never by reselecting individuals.
"""
from __future__ import annotations

import itertools
import random
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from experiment_types import Individual
from stimuli import image_path, smile_label


# =============================================================================
# BLOCK-LEVEL BALANCE
# =============================================================================

def condition_combinations(levels: Mapping[str, Sequence[Any]]) -> list[dict[str, Any]]:
    """Cartesian product of condition levels, in declaration order.

    Example: {'size': ['big', 'small'], 'smile': [True, False]} gives four dicts.
    """
    names = list(levels)
    return [
        dict(zip(names, values))
        for values in itertools.product(*(levels[name] for name in names))
    ]


def balanced_conditions(
    levels: Mapping[str, Sequence[Any]],
    repetitions: int,
    rng: random.Random | None = None,
) -> list[dict[str, Any]]:
    """Every combination repeated ``repetitions`` times, in shuffled order.

    Each entry carries a 1-based ``repetition`` key.
    """
    rng = rng or random.Random()
    conditions = [
        dict(combo, repetition=rep + 1)
        for combo in condition_combinations(levels)
        for rep in range(repetitions)
    ]
    rng.shuffle(conditions)
    return conditions


def assign_individuals(
    individuals: Sequence[Individual],
    levels: Mapping[str, Sequence[Any]],
    repetitions: int,
    rng: random.Random | None = None,
) -> list[dict[str, Any]]:
    """Assign individuals to a balanced set of conditions.

    The pool is shuffled and sliced into chunks of ``repetitions``, one chunk
    per combination; the resulting list is then shuffled for presentation
    order. When the pool is smaller than the block, further reshuffled copies
    of the pool are appended so usage counts differ by at most one.

    Returns:
        One dict per presentation: the combination's keys plus 'individual'.
    """
    rng = rng or random.Random()
    combos = condition_combinations(levels)
    n = len(combos) * repetitions
    if n and not individuals:
        raise ValueError("cannot assign conditions from an empty pool")

    pool: list[Individual] = []
    while len(pool) < n:
        chunk = list(individuals)
        rng.shuffle(chunk)
        pool.extend(chunk)

    trials = []
    for i in range(n):
        combo = combos[i // repetitions]
        trials.append(dict(combo, individual=pool[i]))
    rng.shuffle(trials)
    return trials


# =============================================================================
# GRID-LEVEL BALANCE
# =============================================================================

@dataclass(frozen=True)
class GridImage:
    individual_id: str
    race: str
    gender: str
    smile: bool
    size: str
    image_path: str

    @property
    def position_label(self) -> str:
        return f"{self.individual_id}:{smile_label(self.smile)}"


@dataclass(frozen=True)
class GridSelection:
    images: tuple[GridImage, ...]
    composition: Mapping[str, int]
    size: str

    @property
    def grid_order(self) -> str:
        """'individual_id:smile,...' for grid positions 1..N."""
        return ','.join(img.position_label for img in self.images)


def _composition(
    assignments: Sequence[tuple[Individual, bool]],
    categories: Sequence[str],
) -> dict[str, int]:
    counts = {c: 0 for c in categories}
    counts['smiling'] = 0
    counts['not_smiling'] = 0
    for individual, smile in assignments:
        counts[individual['race']] = counts.get(individual['race'], 0) + 1
        counts['smiling' if smile else 'not_smiling'] += 1
    return counts


def _build_selection(
    assignments: list[tuple[Individual, bool]],
    categories: Sequence[str],
    size: str,
    base: str,
    rng: random.Random,
) -> GridSelection:
    images = [
        GridImage(
            individual_id=ind['id'],
            race=ind['race'],
            gender=ind['gender'],
            smile=smile,
            size=size,
            image_path=image_path(ind['id'], size, smile, base),
        )
        for ind, smile in assignments
    ]
    composition = _composition(assignments, categories)
    rng.shuffle(images)
    return GridSelection(images=tuple(images), composition=composition, size=size)


def _repair_binary(
    smiles: list[bool],
    binary_min: int,
    can_smile: Sequence[bool],
) -> None:
    """Flip assignments in place until both sides reach ``binary_min``.

    Only flips items whose side has more than the minimum, and never gives a
    smile to an item that cannot have one.
    """
    def count(side: bool) -> int:
        return sum(1 for s in smiles if s is side)

    for side in (True, False):
        for i in range(len(smiles)):
            if count(side) >= binary_min:
                break
            if smiles[i] is side or count(not side) <= binary_min:
                continue
            if side and not can_smile[i]:
                continue
            smiles[i] = side
        if count(side) < binary_min:
            raise ValueError(
                f"cannot reach {binary_min} {'smiling' if side else 'not smiling'} faces"
            )


def select_grid(
    pool: Sequence[Individual],
    n: int,
    size: str,
    categories: Sequence[str],
    base: str,
    category_min: int = 1,
    binary_min: int = 2,
    rng: random.Random | None = None,
) -> GridSelection:
    """Pick ``n`` individuals for one grid under minimum-representation constraints.

    Args:
        pool: candidate individuals (each with 'id', 'race', 'gender')
        n: grid size
        size: size condition applied to every image
        categories: category labels that must each appear
        base: image directory
        category_min: minimum count per category
        binary_min: minimum count for smiling and for not smiling
        rng: random source

    Raises:
        ValueError: constraints cannot be satisfied by this pool
    """
    rng = rng or random.Random()
    if n < category_min * len(categories):
        raise ValueError(f"grid of {n} cannot hold {category_min} of each of {len(categories)} categories")
    if n < 2 * binary_min:
        raise ValueError(f"grid of {n} cannot hold {binary_min} of each expression")
    if len(pool) < n:
        raise ValueError(f"pool of {len(pool)} is smaller than grid size {n}")

    shuffled = list(pool)
    rng.shuffle(shuffled)

    selected: list[Individual] = []
    for category in categories:
        members = [ind for ind in shuffled if ind['race'] == category]
        if len(members) < category_min:
            raise ValueError(f"pool has fewer than {category_min} '{category}' individuals")
        selected.extend(members[:category_min])
    chosen_ids = {ind['id'] for ind in selected}
    for ind in shuffled:
        if len(selected) >= n:
            break
        if ind['id'] not in chosen_ids:
            selected.append(ind)
            chosen_ids.add(ind['id'])
    rng.shuffle(selected)

    cap = n - binary_min
    smiles: list[bool] = []
    for ind in selected:
        n_smiling = sum(smiles)
        n_not = len(smiles) - n_smiling
        if not ind.get('has_smile', True) or n_smiling >= cap:
            smile = False
        elif n_not >= cap:
            smile = True
        else:
            smile = rng.random() < 0.5
        smiles.append(smile)

    _repair_binary(smiles, binary_min, [ind.get('has_smile', True) for ind in selected])
    return _build_selection(list(zip(selected, smiles)), categories, size, base, rng)


def practice_grid(
    practice_individuals: Sequence[Individual],
    size: str,
    categories: Sequence[str],
    base: str,
    smile_target: int = 4,
    rng: random.Random | None = None,
) -> GridSelection:
    """Grid of every practice individual.

    Up to ``smile_target`` of the individuals that have a smiling image are
    shown smiling; the rest are shown not smiling.
    """
    rng = rng or random.Random()
    can_smile = [ind for ind in practice_individuals if ind.get('has_smile', False)]
    cannot_smile = [ind for ind in practice_individuals if not ind.get('has_smile', False)]
    rng.shuffle(can_smile)
    n_smiling = min(smile_target, len(can_smile))

    assignments = [(ind, i < n_smiling) for i, ind in enumerate(can_smile)]
    assignments.extend((ind, False) for ind in cannot_smile)
    return _build_selection(assignments, categories, size, base, rng)
