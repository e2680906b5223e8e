"""Response widget contract: prompt types, outcomes and settle-once result slots.

A widget presents one prompt and writes its result into a ``PromptSlot``.
The slot accepts exactly one resolution: a submit or a timeout, whichever
arrives first. The loser is a no-op, so a late click never overwrites a
timeout and a late timeout never erases a submitted answer.

The record step of a presentation reads results from its
``PresentationRecord`` rather than from variables captured when the prompts
were built.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping, NamedTuple, Protocol, Union


class PromptOutcome(NamedTuple):
    values: Mapping[str, Any] | None
    elapsed_ms: float | None
    timed_out: bool = False


TIMED_OUT = PromptOutcome(values=None, elapsed_ms=None, timed_out=True)


# =============================================================================
# PROMPT TYPES
# =============================================================================

@dataclass(frozen=True)
class ChoicePrompt:
    """Single choice among options (already in their randomized order).

    A boolean question is a two-option choice.
    """
    name: str
    question: str
    options: tuple[str, ...]


@dataclass(frozen=True)
class SliderPairPrompt:
    """0-100 rating slider plus 0-100 confidence slider for one dimension."""
    name: str
    question: str
    low_anchor: str
    high_anchor: str
    image_path: str | None = None
    image_size: tuple[int, int] | None = None
    scale_min: int = 0
    scale_max: int = 100


@dataclass(frozen=True)
class CountGridPrompt:
    """Bounded integer fields (in randomized order) with a running total.

    On timeout the partial counts entered so far are kept.
    """
    name: str
    question: str
    fields: tuple[str, ...]
    labels: Mapping[str, str]
    expected_total: int
    max_value: int

    @property
    def keep_partial_on_timeout(self) -> bool:
        return True


Prompt = Union[ChoicePrompt, SliderPairPrompt, CountGridPrompt]


# =============================================================================
# SLOTS
# =============================================================================

class PromptSlot:
    """Holds the single result of one prompt.

    States: pending -> submitted | timed_out. Transitions out of a settled
    state are ignored.
    """

    PENDING = 'pending'
    SUBMITTED = 'submitted'
    EXPIRED = 'timed_out'

    def __init__(self, name: str, timeout_ms: float | None) -> None:
        self.name = name
        self.timeout_ms = timeout_ms
        self.state = self.PENDING
        self.started_at: float | None = None
        self.response_order: list[str] = []
        self.partial: dict[str, Any] = {}
        self._outcome: PromptOutcome | None = None

    @property
    def settled(self) -> bool:
        return self.state != self.PENDING

    @property
    def outcome(self) -> PromptOutcome:
        return self._outcome if self._outcome is not None else TIMED_OUT

    def start(self, now: float) -> None:
        if self.started_at is None:
            self.started_at = now

    def touch(self, field: str, value: Any) -> None:
        """Record partial input; the first touch of each field sets response order."""
        if self.settled:
            return
        if field not in self.response_order:
            self.response_order.append(field)
        self.partial[field] = value

    def submit(self, values: Mapping[str, Any], now: float) -> bool:
        """Accept a submission. Returns False if the slot was already settled."""
        if self.settled:
            return False
        elapsed = None
        if self.started_at is not None:
            elapsed = round((now - self.started_at) * 1000.0, 1)
        self._outcome = PromptOutcome(values=dict(values), elapsed_ms=elapsed)
        self.state = self.SUBMITTED
        return True

    def expire(self, keep_partial: bool = False) -> bool:
        """Time the prompt out. Returns False if the slot was already settled."""
        if self.settled:
            return False
        values = dict(self.partial) if keep_partial and self.partial else None
        self._outcome = PromptOutcome(values=values, elapsed_ms=None, timed_out=True)
        self.state = self.EXPIRED
        return True

    def deadline_passed(self, now: float) -> bool:
        if self.timeout_ms is None or self.started_at is None:
            return False
        return (now - self.started_at) * 1000.0 >= self.timeout_ms

    def poll_timeout(self, now: float, keep_partial: bool = False) -> bool:
        """Expire the slot if its deadline has passed. Returns True if it expired now."""
        if self.settled or not self.deadline_passed(now):
            return False
        return self.expire(keep_partial=keep_partial)


class PresentationRecord:
    """Durable per-presentation store of prompt slots, keyed by prompt name."""

    def __init__(self) -> None:
        self._slots: dict[str, PromptSlot] = {}
        self.prompt_order: list[str] = []

    def open_slot(self, name: str, timeout_ms: float | None) -> PromptSlot:
        if name in self._slots:
            raise ValueError(f"prompt '{name}' already presented")
        slot = PromptSlot(name, timeout_ms)
        self._slots[name] = slot
        self.prompt_order.append(name)
        return slot

    def slot(self, name: str) -> PromptSlot | None:
        return self._slots.get(name)

    def outcome(self, name: str) -> PromptOutcome:
        slot = self._slots.get(name)
        return slot.outcome if slot is not None else TIMED_OUT

    def response_order(self, name: str) -> list[str]:
        slot = self._slots.get(name)
        return list(slot.response_order) if slot is not None else []


class ResponseWidget(Protocol):
    def present(
        self,
        prompt: Prompt,
        slot: PromptSlot,
        should_abort: Callable[[], bool],
    ) -> None:
        """Show ``prompt`` until ``slot`` is settled or ``should_abort()`` is true."""
        ...
