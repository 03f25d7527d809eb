"""Tests for the HTTP API and action router."""

from __future__ import annotations

import io
import json
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from conftest import JOB_NAME, candidates_response, client_error, describe_job_response
from retail_forecaster.api import ActionRouter, create_app, error_response
from retail_forecaster.chat import ChatAssistant
from retail_forecaster.exceptions import RetailForecastError

HISTORY = [
    {"date": "2024-01-01T00:00:00.000Z", "actual": 10},
    {"date": "2024-02-01T00:00:00.000Z", "actual": 12},
]


@pytest.fixture
def mock_bedrock():
    return MagicMock()


@pytest.fixture
def app_parts(settings, make_orchestrator, mock_sagemaker, mock_runtime, mock_s3, mock_bedrock):
    orchestrator = make_orchestrator(sagemaker=mock_sagemaker, runtime=mock_runtime, s3=mock_s3)
    chat = ChatAssistant(settings, bedrock_client=mock_bedrock)
    return orchestrator, chat


@pytest.fixture
def client(settings, app_parts):
    orchestrator, chat = app_parts
    return TestClient(create_app(settings, orchestrator=orchestrator, chat=chat))


def _action(client, action, data=None):
    return client.post("/api/forecast", json={"action": action, "data": data or {}})


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["environment"] == "dev"


def test_unknown_action_returns_400(client):
    response = _action(client, "train_everything")

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid action"}


def test_router_lists_all_actions(app_parts):
    router = ActionRouter(app_parts[0])

    assert sorted(router.actions) == sorted(
        [
            "create_job",
            "get_job_status",
            "deploy_model",
            "get_endpoint_status",
            "get_forecast",
            "cleanup_resources",
            "get_upload_url",
        ]
    )


def test_create_job(client, mock_sagemaker):
    mock_sagemaker.create_auto_ml_job.return_value = {"AutoMLJobArn": "arn:job"}

    response = _action(client, "create_job", {"historicalData": HISTORY})

    assert response.status_code == 200
    assert response.json() == {"jobName": JOB_NAME, "jobArn": "arn:job", "status": "Submitted"}


def test_create_job_with_missing_history_is_an_invalid_request(client, mock_sagemaker):
    response = _action(client, "create_job", {})

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "Failed to process your request"
    assert body["kind"] == "invalid_request"
    assert "historicalData" in body["details"]
    mock_sagemaker.create_auto_ml_job.assert_not_called()


def test_get_job_status(client, mock_sagemaker):
    mock_sagemaker.describe_auto_ml_job.return_value = describe_job_response("Completed")
    mock_sagemaker.list_candidates_for_auto_ml_job.return_value = candidates_response("best")

    response = _action(client, "get_job_status", {"jobName": JOB_NAME})

    assert response.status_code == 200
    assert response.json()["status"] == "Completed"
    assert response.json()["bestCandidate"] == "best"


def test_deploy_before_completion_reports_kind(client, mock_sagemaker):
    mock_sagemaker.describe_auto_ml_job.return_value = describe_job_response("InProgress")

    response = _action(client, "deploy_model", {"jobName": JOB_NAME})

    assert response.status_code == 500
    assert response.json()["kind"] == "no_candidate_available"
    assert response.json()["retryable"] is False
    mock_sagemaker.create_model.assert_not_called()


def test_deploy_model(client, mock_sagemaker):
    mock_sagemaker.describe_auto_ml_job.return_value = describe_job_response("Completed")
    mock_sagemaker.list_candidates_for_auto_ml_job.return_value = candidates_response("best")

    response = _action(client, "deploy_model", {"jobName": JOB_NAME})

    assert response.status_code == 200
    assert response.json()["endpointName"] == f"{JOB_NAME}-endpoint"


def test_get_endpoint_status(client, mock_sagemaker):
    mock_sagemaker.describe_endpoint.return_value = {"EndpointName": "ep", "EndpointStatus": "Creating"}

    response = _action(client, "get_endpoint_status", {"endpointName": "ep"})

    assert response.status_code == 200
    assert response.json()["status"] == "Creating"


def test_get_forecast(client, mock_runtime):
    mock_runtime.invoke_endpoint.return_value = {
        "Body": io.BytesIO(json.dumps({"predictions": [{"mean": [11, 12, 13]}]}).encode())
    }

    response = _action(
        client,
        "get_forecast",
        {"endpointName": "ep", "historicalData": HISTORY, "forecastHorizon": 3},
    )

    assert response.status_code == 200
    assert response.json() == {
        "forecast": [
            {"date": "2024-03-01", "actual": None, "forecast": 11.0},
            {"date": "2024-04-01", "actual": None, "forecast": 12.0},
            {"date": "2024-05-01", "actual": None, "forecast": 13.0},
        ]
    }


def test_get_forecast_on_unready_endpoint(client, mock_runtime):
    mock_runtime.invoke_endpoint.side_effect = client_error("ModelNotReadyException", "not ready")

    response = _action(
        client,
        "get_forecast",
        {"endpointName": "ep", "historicalData": HISTORY, "forecastHorizon": 3},
    )

    assert response.status_code == 500
    assert response.json()["kind"] == "invocation_failed"
    assert response.json()["retryable"] is True


def test_cleanup_resources(client, mock_sagemaker):
    response = _action(
        client,
        "cleanup_resources",
        {"endpointName": "ep", "endpointConfigName": "cfg", "modelName": "model"},
    )

    assert response.status_code == 200
    assert response.json()["success"] is True
    mock_sagemaker.delete_model.assert_called_once_with(ModelName="model")


def test_cleanup_partial_failure(client, mock_sagemaker):
    mock_sagemaker.delete_model.side_effect = client_error("ValidationException", "nope")

    response = _action(
        client,
        "cleanup_resources",
        {"endpointName": "ep", "endpointConfigName": "cfg", "modelName": "model"},
    )

    assert response.status_code == 500
    assert response.json()["kind"] == "cleanup_partially_failed"


def test_get_upload_url(client, mock_s3):
    mock_s3.generate_presigned_url.return_value = "https://example.com/upload"

    response = _action(client, "get_upload_url", {"filename": "sales.csv", "contentType": "text/csv"})

    assert response.status_code == 200
    assert response.json() == {"uploadUrl": "https://example.com/upload"}
    mock_s3.generate_presigned_url.assert_called_once_with(
        "put_object",
        Params={"Bucket": "test-data-bucket", "Key": "uploads/sales.csv", "ContentType": "text/csv"},
        ExpiresIn=3600,
    )


def test_chat(client, mock_bedrock):
    mock_bedrock.converse.return_value = {
        "output": {"message": {"role": "assistant", "content": [{"text": "Hello!"}]}}
    }

    response = client.post("/api/chat", json={"messages": [{"role": "user", "content": "hi"}]})

    assert response.status_code == 200
    assert response.json() == {"response": "Hello!"}


def test_chat_failure(client, mock_bedrock):
    mock_bedrock.converse.side_effect = client_error("AccessDeniedException", "no model access")

    response = client.post("/api/chat", json={"messages": [{"role": "user", "content": "hi"}]})

    assert response.status_code == 500
    assert response.json()["kind"] == "chat_completion_failed"


@pytest.mark.parametrize(
    "body",
    [
        {"data": {}},
        {"action": None, "data": {}},
        {"action": 42},
        {"action": ["create_job"]},
        {"action": {"name": "create_job"}},
    ],
)
def test_missing_or_non_string_action_returns_400(client, mock_sagemaker, body):
    response = client.post("/api/forecast", json=body)

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid action"}
    mock_sagemaker.create_auto_ml_job.assert_not_called()


def test_malformed_data_is_reported_as_error(client):
    response = client.post("/api/forecast", json={"action": "get_job_status", "data": [1, 2]})

    assert response.status_code == 500
    assert response.json()["kind"] == "invalid_request"


def test_long_forecast_horizon_is_accepted(client, mock_runtime):
    mock_runtime.invoke_endpoint.return_value = {
        "Body": io.BytesIO(json.dumps({"predictions": [{"mean": [1.0] * 121}]}).encode())
    }

    response = _action(
        client,
        "get_forecast",
        {"endpointName": "ep", "historicalData": HISTORY, "forecastHorizon": 121},
    )

    assert response.status_code == 200
    assert len(response.json()["forecast"]) == 121


def test_untyped_errors_are_reported_as_internal():
    body = json.loads(error_response(RetailForecastError("boom")).body)

    assert body["kind"] == "internal_error"
    assert body["retryable"] is False
    assert json.loads(error_response(RuntimeError("boom")).body)["kind"] == "internal_error"
