# repositories/state_repo.py
import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rct_allocator.models.schemas.experiment import ExperimentState
from rct_allocator.repositories.experiment_repo import ExperimentRepository
from rct_allocator.repositories.participant_repo import ParticipantRepository

logger = logging.getLogger(__name__)


class ExperimentStateRepository:
    """Loads and saves a config together with its participant history."""

    def __init__(self, db: Session):
        self.db = db
        self.experiment_repo = ExperimentRepository(db)
        self.participant_repo = ParticipantRepository(db)

    def load(self) -> Optional[ExperimentState]:
        """
        Returns the stored state, or None when no configuration was saved.

        Raises PersistenceCorruptionError for malformed rows.
        """
        config = self.experiment_repo.get_config()
        if config is None:
            return None

        participants = self.participant_repo.list_participants()
        return ExperimentState(config=config, participants=participants)

    def save(self, state: ExperimentState) -> None:
        """Replaces everything stored with ``state`` in one transaction."""
        try:
            self.participant_repo.delete_all(commit=False)
            self.experiment_repo.save_config(state.config, commit=False)
            for participant in state.participants:
                self.participant_repo.create_participant(participant, commit=False)
            self.db.commit()

        except SQLAlchemyError as e:
            self.db.rollback()
            raise RuntimeError(f"A database error occurred while saving experiment state: {e}")

        logger.debug("Saved experiment state with %d participants", len(state.participants))

    def reset(self) -> ExperimentState:
        """Clears all participants and restores the default configuration."""
        state = ExperimentState.empty()
        self.save(state)
        return state
