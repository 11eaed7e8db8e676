# services/experiment_service.py

import logging
import random
import threading
from datetime import datetime
from typing import List, Optional

from fastapi import HTTPException, status
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from rct_allocator.core.errors import (
    AssignmentValidationError,
    CapacityExhaustedError,
    PersistenceCorruptionError,
)
from rct_allocator.models.schemas.experiment import (
    AssignmentCounts,
    ExperimentConfig,
    ExperimentState,
    Participant,
    Severity,
)
from rct_allocator.models.schemas.requests import (
    GroupStatusModel,
    GroupUpdateModel,
    MonitorModel,
    StratumGroupStatusModel,
)
from rct_allocator.repositories.experiment_repo import ExperimentRepository
from rct_allocator.repositories.participant_repo import ParticipantRepository
from rct_allocator.repositories.state_repo import ExperimentStateRepository
from rct_allocator.services import allocation
from rct_allocator.services.export_service import participants_to_csv

logger = logging.getLogger(__name__)

# Serializes every read-modify-write of the stored experiment (assignment,
# config edits, resets) so concurrent requests cannot both act on the same
# snapshot. Re-entrant because the locked paths call load_state.
_state_lock = threading.RLock()


class ExperimentService:
    def __init__(self, db: Session, rng: Optional[random.Random] = None):
        self.state_repo = ExperimentStateRepository(db)
        self.experiment_repo = ExperimentRepository(db)
        self.participant_repo = ParticipantRepository(db)
        self.rng = rng
        self.db = db

    # --- State ---

    def load_state(self) -> ExperimentState:
        """
        Loads config and participants, falling back to a full reset when
        nothing is stored yet or the stored data is malformed.
        """
        with _state_lock:
            try:
                state = self.state_repo.load()
            except PersistenceCorruptionError as e:
                logger.warning("Discarding corrupt experiment state: %s", e)
                return self.state_repo.reset()

            if state is None:
                logger.info("No stored experiment; initialising default configuration")
                return self.state_repo.reset()

            return state

    def reset_experiment(self) -> ExperimentConfig:
        with _state_lock:
            state = self.state_repo.reset()
        logger.info("Experiment reset to default configuration")
        return state.config

    # --- Configuration ---

    def get_config(self) -> ExperimentConfig:
        return self.load_state().config

    def _save_config(self, config: ExperimentConfig) -> ExperimentConfig:
        try:
            return self.experiment_repo.save_config(config)
        except RuntimeError as e:
            logger.error("Failed to save configuration: %s", e)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to save configuration",
            )

    def set_group_count(self, count: int) -> ExperimentConfig:
        with _state_lock:
            config = self.get_config().with_group_count(count)
            return self._save_config(config)

    def update_group(self, index: int, update: GroupUpdateModel) -> ExperimentConfig:
        """Applies a partial name/size update to the group at 0-based ``index``."""
        with _state_lock:
            config = self.get_config()
            if not 0 <= index < config.group_count:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail=f"Group index {index} not found.",
                )

            if update.name is not None:
                config = config.with_group_name(index, update.name)
            if update.size is not None:
                config = config.with_group_size(index, update.size)

            return self._save_config(config)

    def set_stratum_ratio(self, severity: Severity, ratio: int) -> ExperimentConfig:
        with _state_lock:
            config = self.get_config().with_stratum_ratio(severity, ratio)
            return self._save_config(config)

    def set_stratification_enabled(self, enabled: bool) -> ExperimentConfig:
        with _state_lock:
            config = self.get_config().with_stratification(enabled)
            return self._save_config(config)

    # --- Assignment ---

    def assign_participant(
        self, severity: Optional[Severity], now: Optional[datetime] = None
    ) -> Participant:
        """
        Assigns a new participant and persists the record.

        1. Load the authoritative config and participant history.
        2. Let the allocation engine pick a group and mint an id.
        3. Append the new participant.
        """
        with _state_lock:
            state = self.load_state()

            try:
                participant = allocation.assign(
                    state.config, state.participants, severity, rng=self.rng, now=now
                )
            except AssignmentValidationError as e:
                logger.info("Rejected assignment: %s", e)
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
            except CapacityExhaustedError as e:
                logger.info("Rejected assignment (severity=%s): %s", severity, e)
                raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

            try:
                self.participant_repo.create_participant(participant)
            except OperationalError as e:
                logger.error("Database Operational Error: %s", e)
                raise HTTPException(
                    status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                    detail="Database connection failed. Please try again shortly.",
                )
            except (ValueError, RuntimeError, SQLAlchemyError) as e:
                logger.error("Exception occurred creating participant: %s", e)
                raise HTTPException(
                    status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                    detail="An unexpected error occurred during assignment.",
                )

        logger.info(
            "Assigned participant %s to group %d (%s), severity=%s",
            participant.participant_id,
            participant.assigned_group,
            participant.assigned_group_name,
            participant.severity.value if participant.severity else None,
        )
        return participant

    def list_participants(self) -> List[Participant]:
        return self.load_state().participants

    # --- Reporting ---

    def get_counts(self) -> AssignmentCounts:
        state = self.load_state()
        return allocation.compute_counts(state.participants, state.config)

    def get_monitor(self) -> MonitorModel:
        """Target-vs-assigned figures for every group, plus the severity matrix."""
        state = self.load_state()
        config = state.config
        counts = allocation.compute_counts(state.participants, config)

        groups = [
            GroupStatusModel(
                group=index + 1,
                name=config.display_name(index),
                target=target,
                assigned=assigned,
                remaining=max(0, target - assigned),
            )
            for index, (target, assigned) in enumerate(zip(config.group_sizes, counts.overall))
        ]

        stratified = None
        if config.stratification_enabled:
            stratified = {}
            for severity in Severity:
                targets = allocation.target_sizes(config, severity)
                stratified[severity] = [
                    StratumGroupStatusModel(
                        group=index + 1,
                        name=config.display_name(index),
                        target=target,
                        assigned=assigned,
                    )
                    for index, (target, assigned) in enumerate(
                        zip(targets, counts.stratified[severity])
                    )
                ]

        return MonitorModel(
            total_assigned=counts.total,
            total_target=sum(config.group_sizes),
            groups=groups,
            stratification_enabled=config.stratification_enabled,
            stratified=stratified,
        )

    def export_csv(self) -> Optional[bytes]:
        return participants_to_csv(self.list_participants())
