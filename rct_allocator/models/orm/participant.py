from sqlalchemy import Column, DateTime, Enum, Integer, String

from rct_allocator.models.schemas.experiment import Severity

from .base import Base


class ParticipantORM(Base):
    __tablename__ = "participants"

    # Insertion order is the order participants were assigned in
    row_id = Column(Integer, primary_key=True, autoincrement=True)
    participant_id = Column(String, unique=True, nullable=False, index=True)

    # NULL when the participant was assigned without stratification
    severity = Column(
        Enum(Severity, name="severity", values_callable=lambda e: [m.value for m in e]),
        nullable=True,
        index=True,
    )

    assigned_group = Column(Integer, nullable=False, index=True)
    # Snapshot of the group's name when the assignment was made
    assigned_group_name = Column(String, nullable=False)

    assigned_at = Column(DateTime(timezone=True), nullable=False, index=True)
