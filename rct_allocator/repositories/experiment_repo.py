from typing import Optional

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rct_allocator.core.errors import PersistenceCorruptionError
from rct_allocator.models.orm.experiment import CONFIG_ROW_ID, ExperimentConfigORM
from rct_allocator.models.schemas.experiment import ExperimentConfig


class ExperimentRepository:
    def __init__(self, db: Session):
        """Initializes the repository with a database session."""
        self.db = db

    def get_config(self) -> Optional[ExperimentConfig]:
        """
        Fetches the stored configuration.

        Returns None when nothing has been saved yet and raises
        PersistenceCorruptionError when the stored row does not describe a
        valid configuration.
        """
        config_orm = self.db.get(ExperimentConfigORM, CONFIG_ROW_ID)
        if config_orm is None:
            return None

        try:
            return ExperimentConfig.model_validate(config_orm)
        except ValidationError as e:
            raise PersistenceCorruptionError(f"Stored configuration is malformed: {e}")

    def save_config(self, config: ExperimentConfig, commit: bool = True) -> ExperimentConfig:
        """Creates or overwrites the single configuration row."""
        config_dict = config.model_dump(mode="json")
        config_dict["config_id"] = CONFIG_ROW_ID

        try:
            self.db.merge(ExperimentConfigORM(**config_dict))
            if commit:
                self.db.commit()
            else:
                self.db.flush()

        except SQLAlchemyError as e:
            self.db.rollback()
            raise RuntimeError(f"A database error occurred while saving the configuration: {e}")

        return config
