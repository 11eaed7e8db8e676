"""
Allocation engine.

Every function here is a pure function of the config and participant list it
is given. Nothing is cached and nothing is appended: the caller owns the
participant collection and decides when the returned record is persisted.
"""

import random
from datetime import datetime
from typing import Iterable, List, Optional, Protocol, Sequence

from rct_allocator.core.errors import AssignmentValidationError, CapacityExhaustedError
from rct_allocator.models.schemas.experiment import (
    AssignmentCounts,
    ExperimentConfig,
    Participant,
    Severity,
)


class RandomSource(Protocol):
    def randrange(self, stop: int) -> int: ...


_default_rng = random.Random()


def compute_counts(
    participants: Iterable[Participant], config: ExperimentConfig
) -> AssignmentCounts:
    """
    Counts participants per group, overall and per severity.

    Records whose group falls outside the current group count (left over after
    the count was reduced) are skipped.
    """
    overall = [0] * config.group_count
    stratified = {severity: [0] * config.group_count for severity in Severity}

    for participant in participants:
        if not 1 <= participant.assigned_group <= config.group_count:
            continue
        index = participant.assigned_group - 1
        overall[index] += 1
        if participant.severity is not None:
            stratified[participant.severity][index] += 1

    return AssignmentCounts(overall=overall, stratified=stratified)


def target_sizes(config: ExperimentConfig, severity: Optional[Severity]) -> List[int]:
    """Per-group targets under the active criterion."""
    if config.stratification_enabled and severity is not None:
        ratio = config.strata[severity]
        return [size * ratio // 100 for size in config.group_sizes]
    return list(config.group_sizes)


def current_counts(
    counts: AssignmentCounts, config: ExperimentConfig, severity: Optional[Severity]
) -> List[int]:
    if config.stratification_enabled and severity is not None:
        return counts.stratified[severity]
    return counts.overall


def remaining_slots(targets: Sequence[int], current: Sequence[int]) -> List[int]:
    """Open slots per group; groups at or over target count as 0."""
    return [max(0, target - count) for target, count in zip(targets, current)]


def draw(remaining: Sequence[int], rng: Optional[RandomSource] = None) -> int:
    """
    Picks a 1-indexed group with probability proportional to its open slots.

    Equivalent to drawing uniformly from a pool that lists each group once per
    remaining slot, which pulls enrollment toward under-filled groups, but
    without materializing that pool.
    """
    rng = rng or _default_rng
    slot = rng.randrange(sum(remaining))
    for index, open_slots in enumerate(remaining):
        if slot < open_slots:
            return index + 1
        slot -= open_slots
    raise AssertionError("slot index past the last group")


def next_participant_id(
    participants: Iterable[Participant], now: Optional[datetime] = None
) -> str:
    """
    Returns the next ``YYYYMMDD_NNN`` id for the local date of ``now``.

    Only ids carrying the same date prefix are considered; suffixes that are
    not integers are ignored.
    """
    now = now or datetime.now().astimezone()
    date_prefix = now.strftime("%Y%m%d")

    max_seq = 0
    for participant in participants:
        if not participant.participant_id.startswith(f"{date_prefix}_"):
            continue
        parts = participant.participant_id.split("_")
        if len(parts) != 2:
            continue
        try:
            seq = int(parts[1])
        except ValueError:
            continue
        max_seq = max(max_seq, seq)

    return f"{date_prefix}_{max_seq + 1:03d}"


def assign(
    config: ExperimentConfig,
    participants: Sequence[Participant],
    severity: Optional[Severity] = None,
    rng: Optional[RandomSource] = None,
    now: Optional[datetime] = None,
) -> Participant:
    """
    Picks a group for a new participant and returns the new record.

    Raises:
        AssignmentValidationError: stratification is on and no severity was given.
        CapacityExhaustedError: no group has a slot left under the active criterion.
    """
    if config.stratification_enabled and severity is None:
        raise AssignmentValidationError()

    counts = compute_counts(participants, config)
    remaining = remaining_slots(
        target_sizes(config, severity), current_counts(counts, config, severity)
    )
    if not any(remaining):
        raise CapacityExhaustedError()

    assigned_group = draw(remaining, rng)
    now = now or datetime.now().astimezone()

    return Participant(
        participant_id=next_participant_id(participants, now),
        severity=severity,
        assigned_group=assigned_group,
        assigned_group_name=config.group_names[assigned_group - 1],
        assigned_at=now,
    )
