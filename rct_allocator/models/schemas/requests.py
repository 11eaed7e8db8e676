from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .experiment import Severity


#  configuration flow


class GroupCountUpdateModel(BaseModel):
    # Out-of-range counts are clamped by the config, not rejected here.
    count: int


class GroupUpdateModel(BaseModel):
    """Partial update for a single group; omitted fields are left unchanged."""

    name: Optional[str] = None
    size: Optional[int] = Field(None, description="Target enrollment; negatives become 0.")


class StratumRatioUpdateModel(BaseModel):
    ratio: int = Field(..., description="Percentage for this severity, clamped to [0, 100].")


class StratificationUpdateModel(BaseModel):
    enabled: bool


#  assignment flow


class AssignmentCreateModel(BaseModel):
    """Schema for assigning a new participant (API Input)."""

    severity: Optional[Severity] = Field(
        None, description="Required when stratification is enabled."
    )


# --- Monitoring ---


class GroupStatusModel(BaseModel):
    group: int
    name: str
    target: int
    assigned: int
    remaining: int


class StratumGroupStatusModel(BaseModel):
    group: int
    name: str
    target: int = Field(..., description="Group target scaled by the stratum ratio.")
    assigned: int


class MonitorModel(BaseModel):
    """Target-vs-actual enrollment, overall and per severity stratum."""

    total_assigned: int
    total_target: int
    groups: List[GroupStatusModel]
    stratification_enabled: bool
    stratified: Optional[Dict[Severity, List[StratumGroupStatusModel]]] = None
