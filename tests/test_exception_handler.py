"""Unit tests for the global exception handler middleware.

All tests use a standalone FastAPI app with inline routes so that
no database connections, external services, or real routers are needed.
"""

from unittest.mock import patch

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient
from pydantic import BaseModel

from app.errors import (
    BuildFailedError,
    ConflictError,
    DeployTimeoutError,
    NotFoundError,
    RemoteError,
    StageTimeoutError,
)
from app.middleware.exception_handler import setup_exception_handlers


@pytest.fixture()
def test_app() -> FastAPI:
    """Create a minimal FastAPI app with exception handlers registered."""
    app = FastAPI()
    setup_exception_handlers(app)

    @app.get("/raise-unhandled")
    async def _raise_unhandled() -> None:
        raise RuntimeError("something went very wrong")

    @app.get("/raise-http-404")
    async def _raise_http_404() -> None:
        raise HTTPException(status_code=404, detail="Item not found")

    class Item(BaseModel):
        name: str
        price: float

    @app.post("/validate")
    async def _validate(item: Item) -> dict:
        return item.model_dump()

    @app.get("/raise-value-error")
    async def _raise_value_error() -> None:
        raise ValueError("Unknown column: secret")

    @app.get("/raise-not-found")
    async def _raise_not_found() -> None:
        raise NotFoundError("Module not found")

    @app.get("/raise-remote")
    async def _raise_remote() -> None:
        raise RemoteError("GitHub create repo failed (403): Forbidden", remote_status=403)

    @app.get("/raise-conflict")
    async def _raise_conflict() -> None:
        raise ConflictError("Vercel create project: exists")

    @app.get("/raise-timeout")
    async def _raise_timeout() -> None:
        raise StageTimeoutError("publish", 120)

    @app.get("/raise-deploy-timeout")
    async def _raise_deploy_timeout() -> None:
        raise DeployTimeoutError("dpl_1", 30, 300)

    @app.get("/raise-build-failed")
    async def _raise_build_failed() -> None:
        raise BuildFailedError(
            "Command exited with 1",
            build_error={"code": "BUILD_FAILED"},
            inspector_url="https://vercel.com/inspect/dpl_1",
            deployment_id="dpl_1",
        )

    @app.get("/ok")
    async def _ok() -> dict:
        return {"status": "ok"}

    return app


@pytest.fixture()
def client(test_app: FastAPI) -> TestClient:
    return TestClient(test_app, raise_server_exceptions=False)


# ------------------------------------------------------------------
# Generic unhandled exception → 500
# ------------------------------------------------------------------

def test_unhandled_exception_returns_500(client: TestClient) -> None:
    response = client.get("/raise-unhandled")
    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "Internal Server Error"
    assert body["request_id"]


def test_unhandled_exception_does_not_leak_traceback(client: TestClient) -> None:
    response = client.get("/raise-unhandled")
    assert "something went very wrong" not in str(response.json())


# ------------------------------------------------------------------
# HTTPException / validation
# ------------------------------------------------------------------

def test_http_exception_preserves_status(client: TestClient) -> None:
    response = client.get("/raise-http-404")
    assert response.status_code == 404
    body = response.json()
    assert body["error"] == "Item not found"
    assert body["detail"] == "Item not found"


def test_validation_error_returns_422(client: TestClient) -> None:
    response = client.post("/validate", json={"name": 123})
    assert response.status_code == 422
    body = response.json()
    assert body["error"] == "Validation failed"
    assert isinstance(body["detail"], list)
    assert {"type", "loc", "msg"} >= set(body["detail"][0])


def test_value_error_returns_400(client: TestClient) -> None:
    response = client.get("/raise-value-error")
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Bad Request"
    assert body["detail"] == "Unknown column: secret"


# ------------------------------------------------------------------
# Domain errors → mapped status
# ------------------------------------------------------------------

@pytest.mark.parametrize(
    "path,status,error",
    [
        ("/raise-not-found", 404, "NotFoundError"),
        ("/raise-remote", 502, "RemoteError"),
        ("/raise-conflict", 409, "ConflictError"),
        ("/raise-timeout", 504, "StageTimeoutError"),
        ("/raise-build-failed", 502, "BuildFailedError"),
    ],
)
def test_domain_errors_map_to_status(client: TestClient, path, status, error) -> None:
    response = client.get(path)
    assert response.status_code == status
    assert response.json()["error"] == error


def test_stage_timeout_names_stage(client: TestClient) -> None:
    body = client.get("/raise-deploy-timeout").json()
    assert body["stage"] == "deploy"
    assert "dpl_1" in body["detail"]


def test_build_failure_includes_inspector(client: TestClient) -> None:
    body = client.get("/raise-build-failed").json()
    assert body["deployment_id"] == "dpl_1"
    assert body["inspector_url"] == "https://vercel.com/inspect/dpl_1"
    assert "BUILD_FAILED" in body["detail"]


def test_remote_error_transient_flag() -> None:
    assert RemoteError("x", remote_status=503).transient
    assert RemoteError("x").transient
    assert not RemoteError("x", remote_status=403).transient
    assert not ConflictError().transient


# ------------------------------------------------------------------
# Logging verification
# ------------------------------------------------------------------

def test_exception_handler_logs_traceback(client: TestClient) -> None:
    with patch("app.middleware.exception_handler.logger") as mock_logger:
        client.get("/raise-unhandled")
        mock_logger.error.assert_called_once()
        call_args = mock_logger.error.call_args
        assert "GET" in str(call_args)
        assert "/raise-unhandled" in str(call_args)
        assert call_args.kwargs.get("exc_info") is not None


def test_successful_request_not_affected(client: TestClient) -> None:
    response = client.get("/ok")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
