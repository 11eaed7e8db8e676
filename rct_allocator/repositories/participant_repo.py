from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from rct_allocator.core.errors import PersistenceCorruptionError
from rct_allocator.models.orm.participant import ParticipantORM
from rct_allocator.models.schemas.experiment import Participant


class ParticipantRepository:
    def __init__(self, db: Session):
        self.db = db

    def list_participants(self) -> list[Participant]:
        """Retrieves every participant in the order they were assigned."""
        stmt = select(ParticipantORM).order_by(ParticipantORM.row_id)

        try:
            return [
                Participant.model_validate(participant_orm)
                for participant_orm in self.db.scalars(stmt).all()
            ]
        except ValidationError as e:
            raise PersistenceCorruptionError(f"Stored participant is malformed: {e}")

    def create_participant(self, participant: Participant, commit: bool = True) -> Participant:
        """
        Creates a new participant record.
        Note: The ExperimentService must hold the assignment lock while calling this.
        """
        try:
            self.db.add(ParticipantORM(**participant.model_dump()))
            if commit:
                self.db.commit()
            else:
                self.db.flush()

            return participant

        except IntegrityError:
            self.db.rollback()
            raise ValueError(f"Participant {participant.participant_id} already exists.")
        except SQLAlchemyError as e:
            self.db.rollback()
            raise RuntimeError(f"A database error occurred during participant creation: {e}")

    def delete_all(self, commit: bool = True) -> int:
        deleted = self.db.query(ParticipantORM).delete()
        if commit:
            self.db.commit()
        return deleted
