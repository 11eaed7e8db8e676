import logging
from contextlib import asynccontextmanager
from typing import List

import uvicorn
from fastapi import Depends, FastAPI, Path, Response
from sqlalchemy.orm import Session
from starlette import status

from rct_allocator.core.db import get_db, init_db
from rct_allocator.core.settings import config_settings
from rct_allocator.models.schemas.experiment import (
    AssignmentCounts,
    ExperimentConfig,
    Participant,
    Severity,
)
from rct_allocator.models.schemas.requests import (
    AssignmentCreateModel,
    GroupCountUpdateModel,
    GroupUpdateModel,
    MonitorModel,
    StratificationUpdateModel,
    StratumRatioUpdateModel,
)
from rct_allocator.services.experiment_service import ExperimentService
from rct_allocator.services.export_service import export_filename

logger = logging.getLogger(__name__)


def setup_logging() -> None:
    logging.basicConfig(
        level=config_settings.LOG_LEVEL,
        format="%(asctime)s | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d - %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    init_db()
    logger.info("Database ready at %s", config_settings.DATABASE_URL)
    yield


app = FastAPI(
    title=config_settings.APP_TITLE,
    description="Randomized allocation of trial participants to groups, with optional severity stratification",
    version=config_settings.APP_VERSION,
    lifespan=lifespan,
)


# --- Configuration ---


@app.get(
    "/experiment/config",
    response_model=ExperimentConfig,
    status_code=status.HTTP_200_OK,
    summary="Get the experiment configuration",
)
def get_config(db: Session = Depends(get_db)):
    return ExperimentService(db).get_config()


@app.put(
    "/experiment/config/group-count",
    response_model=ExperimentConfig,
    summary="Set the number of groups",
)
def put_group_count(update: GroupCountUpdateModel, db: Session = Depends(get_db)):
    return ExperimentService(db).set_group_count(update.count)


@app.put(
    "/experiment/config/groups/{index}",
    response_model=ExperimentConfig,
    summary="Rename or resize a group",
)
def put_group(
    update: GroupUpdateModel,
    index: int = Path(..., description="0-based index of the group."),
    db: Session = Depends(get_db),
):
    return ExperimentService(db).update_group(index, update)


@app.put(
    "/experiment/config/strata/{severity}",
    response_model=ExperimentConfig,
    summary="Set a severity's share of each group",
)
def put_stratum_ratio(
    update: StratumRatioUpdateModel,
    severity: Severity = Path(..., description="Severity stratum."),
    db: Session = Depends(get_db),
):
    return ExperimentService(db).set_stratum_ratio(severity, update.ratio)


@app.put(
    "/experiment/config/stratification",
    response_model=ExperimentConfig,
    summary="Enable or disable stratified randomization",
)
def put_stratification(update: StratificationUpdateModel, db: Session = Depends(get_db)):
    return ExperimentService(db).set_stratification_enabled(update.enabled)


@app.post(
    "/experiment/reset",
    response_model=ExperimentConfig,
    summary="Delete all participants and restore the default configuration",
)
def post_reset(db: Session = Depends(get_db)):
    return ExperimentService(db).reset_experiment()


# --- Monitoring ---


@app.get("/experiment/counts", response_model=AssignmentCounts)
def get_counts(db: Session = Depends(get_db)):
    return ExperimentService(db).get_counts()


@app.get(
    "/experiment/monitor",
    response_model=MonitorModel,
    summary="Target vs assigned enrollment per group and stratum",
)
def get_monitor(db: Session = Depends(get_db)):
    return ExperimentService(db).get_monitor()


# --- Participants ---


@app.post(
    "/participants",
    response_model=Participant,
    status_code=status.HTTP_201_CREATED,
    summary="Randomize a new participant",
)
def post_participant(request: AssignmentCreateModel, db: Session = Depends(get_db)):
    """
    Assigns a new participant to a group. Returns 400 when stratification is
    enabled and no severity was given, and 409 when every group is full.
    """
    return ExperimentService(db).assign_participant(request.severity)


@app.get("/participants", response_model=List[Participant])
def get_participants(db: Session = Depends(get_db)):
    return ExperimentService(db).list_participants()


@app.get(
    "/participants/export",
    summary="Download all assignments as CSV",
    response_class=Response,
)
def export_participants(db: Session = Depends(get_db)):
    content = ExperimentService(db).export_csv()
    if content is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{export_filename()}"'},
    )


# Entry point for running the application directly (local development)
if __name__ == "__main__":
    uvicorn.run("rct_allocator.main:app", host="0.0.0.0", port=8000, reload=True)
