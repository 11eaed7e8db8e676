import enum
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

MIN_GROUPS = 2
MAX_GROUPS = 10
DEFAULT_GROUP_SIZE = 30


class Severity(str, enum.Enum):
    HIGH = "high"
    LOW = "low"

    def other(self) -> "Severity":
        return Severity.LOW if self is Severity.HIGH else Severity.HIGH


def default_group_name(index: int) -> str:
    """Name given to the group at 0-based ``index`` when none was configured."""
    return f"Group {index + 1}"


class ExperimentConfig(BaseModel):
    """
    Group definitions and stratification ratios for one experiment.

    The config is immutable: every ``with_*`` mutator returns a new value and
    leaves the original untouched, so callers own the read-modify-write cycle.
    """

    group_count: int = Field(..., ge=MIN_GROUPS, le=MAX_GROUPS)
    group_names: List[str]
    group_sizes: List[int] = Field(
        ..., description="Target enrollment per group, in group order."
    )
    stratification_enabled: bool = False
    strata: Dict[Severity, int] = Field(
        ..., description="Percentage of each group's target reserved per severity."
    )

    model_config = ConfigDict(frozen=True, from_attributes=True)

    @model_validator(mode="after")
    def check_shape(self) -> "ExperimentConfig":
        if len(self.group_names) != self.group_count:
            raise ValueError(
                f"group_names has {len(self.group_names)} entries, expected {self.group_count}"
            )
        if len(self.group_sizes) != self.group_count:
            raise ValueError(
                f"group_sizes has {len(self.group_sizes)} entries, expected {self.group_count}"
            )
        if any(size < 0 for size in self.group_sizes):
            raise ValueError("group_sizes must be non-negative")
        if set(self.strata) != set(Severity):
            raise ValueError("strata must define a ratio for every severity")
        if any(not 0 <= ratio <= 100 for ratio in self.strata.values()):
            raise ValueError("strata ratios must be between 0 and 100")
        if sum(self.strata.values()) != 100:
            raise ValueError(
                f"strata ratios must sum to 100. Got: {sum(self.strata.values())}"
            )
        return self

    @classmethod
    def default(cls) -> "ExperimentConfig":
        return cls(
            group_count=MIN_GROUPS,
            group_names=[default_group_name(i) for i in range(MIN_GROUPS)],
            group_sizes=[DEFAULT_GROUP_SIZE] * MIN_GROUPS,
            stratification_enabled=False,
            strata={Severity.HIGH: 50, Severity.LOW: 50},
        )

    def display_name(self, index: int) -> str:
        return self.group_names[index] or default_group_name(index)

    def with_group_count(self, count: int) -> "ExperimentConfig":
        """Clamps ``count`` to [2, 10], keeping existing groups and padding new ones."""
        new_count = max(MIN_GROUPS, min(MAX_GROUPS, count))
        names = self.group_names[:new_count] + [
            default_group_name(i) for i in range(len(self.group_names), new_count)
        ]
        sizes = self.group_sizes[:new_count] + [DEFAULT_GROUP_SIZE] * max(
            0, new_count - len(self.group_sizes)
        )
        return self.model_copy(
            update={"group_count": new_count, "group_names": names, "group_sizes": sizes}
        )

    def with_group_size(self, index: int, size: int) -> "ExperimentConfig":
        sizes = list(self.group_sizes)
        sizes[index] = max(0, size)
        return self.model_copy(update={"group_sizes": sizes})

    def with_group_name(self, index: int, name: str) -> "ExperimentConfig":
        names = list(self.group_names)
        names[index] = name
        return self.model_copy(update={"group_names": names})

    def with_stratum_ratio(self, severity: Severity, ratio: int) -> "ExperimentConfig":
        """Sets one severity's ratio; the other severity takes the remainder of 100."""
        new_ratio = max(0, min(100, ratio))
        strata = {severity: new_ratio, severity.other(): 100 - new_ratio}
        return self.model_copy(update={"strata": strata})

    def with_stratification(self, enabled: bool) -> "ExperimentConfig":
        return self.model_copy(update={"stratification_enabled": enabled})


class Participant(BaseModel):
    """A single allocation. Never modified after the engine creates it."""

    participant_id: str = Field(..., description="YYYYMMDD_NNN, unique per date.")
    severity: Optional[Severity] = None
    assigned_group: int = Field(..., description="1-indexed group number.")
    assigned_group_name: str = Field(
        ..., description="Group name at the time of assignment."
    )
    assigned_at: datetime

    model_config = ConfigDict(frozen=True, from_attributes=True)


class AssignmentCounts(BaseModel):
    """Per-group enrollment derived from the participant list."""

    overall: List[int]
    stratified: Dict[Severity, List[int]]

    @property
    def total(self) -> int:
        return sum(self.overall)


class ExperimentState(BaseModel):
    """A config together with the full participant history it applies to."""

    config: ExperimentConfig
    participants: List[Participant] = Field(default_factory=list)

    @classmethod
    def empty(cls) -> "ExperimentState":
        return cls(config=ExperimentConfig.default(), participants=[])
