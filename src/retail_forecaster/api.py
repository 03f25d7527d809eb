"""
HTTP API for the retail forecasting front end.

Two JSON endpoints: ``/api/forecast`` dispatches an ``action`` to the job
lifecycle orchestrator, ``/api/chat`` forwards a conversation to Bedrock.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from . import __version__
from .chat import ChatAssistant
from .config import ConfigProvider, Settings
from .exceptions import ErrorKind, InvalidRequest, RetailForecastError
from .models import ChatMessage, DataPoint
from .orchestrator import JobLifecycleOrchestrator

logger = logging.getLogger(__name__)

GENERIC_ERROR = "Failed to process your request"


# Request Models
class _ActionData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CreateJobData(_ActionData):
    historical_data: List[DataPoint] = Field(..., alias="historicalData", min_length=1)
    target_field: Optional[str] = Field(default=None, alias="targetField")


class JobNameData(_ActionData):
    job_name: str = Field(..., alias="jobName", min_length=1)


class EndpointNameData(_ActionData):
    endpoint_name: str = Field(..., alias="endpointName", min_length=1)


class ForecastData(_ActionData):
    endpoint_name: str = Field(..., alias="endpointName", min_length=1)
    historical_data: List[DataPoint] = Field(..., alias="historicalData", min_length=1)
    forecast_horizon: int = Field(..., alias="forecastHorizon", ge=1)


class CleanupData(_ActionData):
    endpoint_name: str = Field(..., alias="endpointName", min_length=1)
    endpoint_config_name: str = Field(..., alias="endpointConfigName", min_length=1)
    model_name: str = Field(..., alias="modelName", min_length=1)


class UploadUrlData(_ActionData):
    filename: str = Field(..., min_length=1)
    content_type: str = Field(default="text/csv", alias="contentType")


class ForecastActionRequest(BaseModel):
    # Missing or non-string actions are answered as invalid, not as validation errors.
    action: Optional[Any] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class ChatRequest(BaseModel):
    messages: List[ChatMessage] = Field(..., min_length=1)


def _parse(model: type, data: Dict[str, Any]) -> Any:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        errors = [
            {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        summary = "; ".join(f"{err['field']}: {err['message']}" for err in errors)
        raise InvalidRequest(f"Invalid request data: {summary}", details={"errors": errors}) from e


class ActionRouter:
    """Maps front-end action names to orchestrator operations."""

    def __init__(self, orchestrator: JobLifecycleOrchestrator):
        self.orchestrator = orchestrator
        self._handlers: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
            "create_job": self._create_job,
            "get_job_status": self._get_job_status,
            "deploy_model": self._deploy_model,
            "get_endpoint_status": self._get_endpoint_status,
            "get_forecast": self._get_forecast,
            "cleanup_resources": self._cleanup_resources,
            "get_upload_url": self._get_upload_url,
        }

    @property
    def actions(self) -> List[str]:
        return list(self._handlers)

    def handles(self, action: Any) -> bool:
        return isinstance(action, str) and action in self._handlers

    def dispatch(self, action: str, data: Dict[str, Any]) -> Dict[str, Any]:
        handler = self._handlers.get(action)
        if handler is None:
            raise InvalidRequest(f"Invalid action: {action}")
        logger.info("Handling forecast action %s", action)
        return handler(data)

    def _create_job(self, data: Dict[str, Any]) -> Dict[str, Any]:
        request = _parse(CreateJobData, data)
        return self.orchestrator.submit_job(request.historical_data, request.target_field).to_dict()

    def _get_job_status(self, data: Dict[str, Any]) -> Dict[str, Any]:
        request = _parse(JobNameData, data)
        return self.orchestrator.poll_job(request.job_name).to_dict()

    def _deploy_model(self, data: Dict[str, Any]) -> Dict[str, Any]:
        request = _parse(JobNameData, data)
        return self.orchestrator.deploy_best_model(request.job_name).to_dict()

    def _get_endpoint_status(self, data: Dict[str, Any]) -> Dict[str, Any]:
        request = _parse(EndpointNameData, data)
        return self.orchestrator.get_endpoint_status(request.endpoint_name).to_dict()

    def _get_forecast(self, data: Dict[str, Any]) -> Dict[str, Any]:
        request = _parse(ForecastData, data)
        points = self.orchestrator.forecast(
            request.endpoint_name, request.historical_data, request.forecast_horizon
        )
        return {"forecast": [point.to_dict() for point in points]}

    def _cleanup_resources(self, data: Dict[str, Any]) -> Dict[str, Any]:
        request = _parse(CleanupData, data)
        return self.orchestrator.cleanup(
            request.endpoint_name, request.endpoint_config_name, request.model_name
        ).to_dict()

    def _get_upload_url(self, data: Dict[str, Any]) -> Dict[str, Any]:
        request = _parse(UploadUrlData, data)
        bucket = self.orchestrator.config_provider.get_config().data_bucket
        url = self.orchestrator.stager.get_upload_url(request.filename, request.content_type, bucket)
        return {"uploadUrl": url}


def error_response(exc: Exception) -> JSONResponse:
    """Render any failure as the 500 body the front end expects."""
    content: Dict[str, Any] = {"error": GENERIC_ERROR, "details": str(exc)}
    if isinstance(exc, RetailForecastError):
        content["kind"] = exc.kind.value
        content["retryable"] = exc.retryable
    else:
        content["kind"] = ErrorKind.INTERNAL_ERROR.value
        content["retryable"] = False
    return JSONResponse(status_code=500, content=content)


# API Application
def create_app(
    settings: Optional[Settings] = None,
    orchestrator: Optional[JobLifecycleOrchestrator] = None,
    chat: Optional[ChatAssistant] = None,
) -> FastAPI:
    """Create FastAPI application with all endpoints."""
    settings = settings or Settings.from_env()
    orchestrator = orchestrator or JobLifecycleOrchestrator(settings, ConfigProvider(settings))
    chat = chat or ChatAssistant(settings)
    router = ActionRouter(orchestrator)

    app = FastAPI(
        title="Retail Forecaster API",
        description="Demand forecasting with SageMaker Autopilot and a Bedrock assistant",
        version=__version__,
    )
    app.state.settings = settings
    app.state.router = router
    app.state.chat = chat

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request, exc: RequestValidationError):
        return error_response(InvalidRequest(f"Invalid request body: {exc.errors()}"))

    @app.get("/health", tags=["Health"])
    def health_check():
        return {
            "status": "healthy",
            "environment": settings.environment,
            "version": __version__,
            "timestamp": datetime.now().isoformat(),
        }

    @app.post("/api/forecast", tags=["Forecasting"])
    def forecast_action(request: ForecastActionRequest):
        if not router.handles(request.action):
            return JSONResponse(status_code=400, content={"error": "Invalid action"})
        try:
            return router.dispatch(request.action, request.data)
        except Exception as e:
            logger.exception("Error in forecast API for action %s", request.action)
            return error_response(e)

    @app.post("/api/chat", tags=["Chat"])
    def chat_completion(request: ChatRequest):
        try:
            return {"response": chat.generate_response(request.messages)}
        except Exception as e:
            logger.exception("Error in chat API")
            return error_response(e)

    return app
