import logging
from typing import Dict

import uvicorn
from fastapi import Depends, FastAPI, Path, Request, status
from fastapi.responses import JSONResponse

from app.core.auth import require_auth_token
from app.core.dependencies import (
    get_event_service,
    get_experiment_service,
    get_flag_service,
)
from app.core.errors import (
    EngineError,
    ExperimentNotActive,
    ExperimentNotFound,
    FlagNotFound,
    InvalidTransition,
    ParticipantNotFound,
    StoreUnavailable,
)
from app.core.logging_config import configure_logging
from app.core.settings import config_settings
from app.models.schemas.event import EventCreateModel, EventResponseModel
from app.models.schemas.experiment import (
    AssignmentModel,
    AssignmentRequest,
    Experiment,
    ExperimentCompleteModel,
    ExperimentCreateModel,
    ExperimentStopModel,
)
from app.models.schemas.flag import (
    BulkFlagEvaluationRequest,
    FlagEvaluation,
    FlagEvaluationModel,
    FlagEvaluationRequest,
)
from app.models.schemas.results import ExperimentResults
from app.services.event_service import EventService
from app.services.experiment_service import ExperimentService
from app.services.flag_service import FlagService

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title=config_settings.APP_NAME,
    description="Feature flag evaluation and sticky A/B experiment assignment.",
    version="0.1.0",
    dependencies=[Depends(require_auth_token)],
)

_ERROR_STATUS = {
    FlagNotFound: status.HTTP_404_NOT_FOUND,
    ExperimentNotFound: status.HTTP_404_NOT_FOUND,
    ParticipantNotFound: status.HTTP_404_NOT_FOUND,
    ExperimentNotActive: status.HTTP_409_CONFLICT,
    InvalidTransition: status.HTTP_409_CONFLICT,
    StoreUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
}


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    status_code = _ERROR_STATUS.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


# --- Flags ---


@app.post(
    "/flags/evaluate",
    response_model=Dict[str, FlagEvaluation],
    status_code=status.HTTP_200_OK,
    summary="Evaluate several flags for one user",
)
def post_bulk_flag_evaluation(
    request_data: BulkFlagEvaluationRequest,
    flag_service: FlagService = Depends(get_flag_service),
):
    """Unknown or globally disabled flags come back disabled rather than failing."""
    return flag_service.evaluate_flags(
        request_data.flag_keys, request_data.user_id, request_data.context
    )


@app.post(
    "/flags/{flag_key}/evaluate",
    response_model=FlagEvaluationModel,
    status_code=status.HTTP_200_OK,
    summary="Evaluate a flag for a user",
)
def post_flag_evaluation(
    request_data: FlagEvaluationRequest,
    flag_key: str = Path(..., description="The key of the flag."),
    flag_service: FlagService = Depends(get_flag_service),
):
    evaluation = flag_service.evaluate_flag(flag_key, request_data.user_id, request_data.context)
    return FlagEvaluationModel(flag_key=flag_key, **evaluation.model_dump())


# --- Experiments ---


@app.post(
    "/experiments",
    response_model=Experiment,
    status_code=status.HTTP_201_CREATED,
)
def post_experiments(
    experiment_data: ExperimentCreateModel,
    experiment_service: ExperimentService = Depends(get_experiment_service),
):
    return experiment_service.create_experiment(experiment_data)


@app.get(
    "/experiments/{experiment_id}",
    response_model=Experiment,
    status_code=status.HTTP_200_OK,
)
def get_experiment(
    experiment_id: str = Path(..., description="The ID of the experiment."),
    experiment_service: ExperimentService = Depends(get_experiment_service),
):
    return experiment_service.get_experiment(experiment_id)


@app.post("/experiments/{experiment_id}/start", response_model=Experiment)
def post_experiment_start(
    experiment_id: str,
    experiment_service: ExperimentService = Depends(get_experiment_service),
):
    return experiment_service.start_experiment(experiment_id)


@app.post("/experiments/{experiment_id}/stop", response_model=Experiment)
def post_experiment_stop(
    experiment_id: str,
    stop_data: ExperimentStopModel | None = None,
    experiment_service: ExperimentService = Depends(get_experiment_service),
):
    reason = stop_data.reason if stop_data else None
    return experiment_service.stop_experiment(experiment_id, reason)


@app.post("/experiments/{experiment_id}/complete", response_model=Experiment)
def post_experiment_complete(
    experiment_id: str,
    complete_data: ExperimentCompleteModel | None = None,
    experiment_service: ExperimentService = Depends(get_experiment_service),
):
    complete_data = complete_data or ExperimentCompleteModel()
    return experiment_service.complete_experiment(
        experiment_id, complete_data.results, complete_data.conclusion
    )


@app.post(
    "/experiments/{experiment_id}/assign",
    response_model=AssignmentModel,
    status_code=status.HTTP_200_OK,
    summary="Get user assignment",
)
def post_user_variant_assignment(
    assignment_data: AssignmentRequest,
    experiment_id: str = Path(..., description="The ID of the experiment."),
    experiment_service: ExperimentService = Depends(get_experiment_service),
):
    """
    Retrieves a user's variant assignment. If no assignment exists and the
    experiment is running, a new, persistent assignment is generated.
    """
    return experiment_service.assign_variant(
        experiment_id, assignment_data.user_id, assignment_data.context
    )


@app.post(
    "/experiments/{experiment_id}/track",
    response_model=EventResponseModel,
    status_code=status.HTTP_201_CREATED,
    summary="Record an event for an assigned user.",
)
def post_experiment_event(
    event_data: EventCreateModel,
    experiment_id: str = Path(..., description="The ID of the experiment."),
    event_service: EventService = Depends(get_event_service),
):
    event = event_service.track(
        experiment_id, event_data.user_id, event_data.event_type, event_data.event_data
    )
    return EventResponseModel(
        event_id=event.event_id, experiment_id=event.experiment_id, variant=event.variant
    )


@app.get(
    "/experiments/{experiment_id}/results",
    response_model=ExperimentResults,
    status_code=status.HTTP_200_OK,
    summary="Get statistics for experiments",
)
def get_experiment_results(
    experiment_id: str,
    experiment_service: ExperimentService = Depends(get_experiment_service),
):
    return experiment_service.get_results(experiment_id)


if __name__ == "__main__":
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=True)
