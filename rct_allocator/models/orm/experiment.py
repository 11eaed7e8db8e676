from sqlalchemy import Boolean, Column, Integer
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import JSON

from .base import Base

# JSONB on PostgreSQL, plain JSON everywhere else (e.g. SQLite)
JSON_TYPE = JSON().with_variant(JSONB(), "postgresql")

# The experiment has exactly one configuration row.
CONFIG_ROW_ID = 1


# --- Experiment Configuration Model ---
class ExperimentConfigORM(Base):
    __tablename__ = "experiment_config"

    config_id = Column(Integer, primary_key=True, default=CONFIG_ROW_ID)

    # --- Groups ---
    group_count = Column(Integer, nullable=False)
    group_names = Column(JSON_TYPE, nullable=False)
    group_sizes = Column(JSON_TYPE, nullable=False)

    # --- Stratification ---
    stratification_enabled = Column(Boolean, default=False, nullable=False)
    # {"high": 50, "low": 50}
    strata = Column(JSON_TYPE, nullable=False)
