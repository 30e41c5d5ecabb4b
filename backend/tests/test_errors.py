"""Error envelope, request ids and the unhandled-exception path."""
import pytest
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from httpx import AsyncClient, ASGITransport
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from formhub.core.errors import ApiError, NotFound, error_code_for
from formhub.core.middleware import (
    RequestContextMiddleware,
    global_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)


class Item(BaseModel):
    name: str
    qty: int


def build_app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(RequestContextMiddleware)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    @app.get("/boom")
    async def boom():
        raise RuntimeError("secret internals")

    @app.get("/missing")
    async def missing():
        raise NotFound("Widget")

    @app.get("/teapot")
    async def teapot():
        raise ApiError("Short and stout", status_code=418, code="teapot", details=[{"field": "spout"}])

    @app.post("/items")
    async def items(item: Item):
        return {"ok": True}

    return app


@pytest.fixture
async def bare_client():
    async with AsyncClient(transport=ASGITransport(app=build_app()), base_url="http://test") as ac:
        yield ac


@pytest.mark.anyio
async def test_unhandled_exception_is_generic_500(bare_client):
    res = await bare_client.get("/boom")
    assert res.status_code == 500
    body = res.json()
    assert body["status"] == "error"
    assert body["error"] == {"code": "internal_error", "message": "Internal server error"}
    assert "secret internals" not in res.text
    assert body["request_id"]


@pytest.mark.anyio
async def test_api_error_envelope(bare_client):
    res = await bare_client.get("/teapot")
    assert res.status_code == 418
    assert res.json()["error"] == {"code": "teapot", "message": "Short and stout", "details": [{"field": "spout"}]}

    res = await bare_client.get("/missing")
    assert res.status_code == 404
    assert res.json()["error"] == {"code": "not_found", "message": "Widget not found"}


@pytest.mark.anyio
async def test_unknown_route_is_enveloped(bare_client):
    res = await bare_client.get("/nowhere")
    assert res.status_code == 404
    assert res.json()["status"] == "error"
    assert res.json()["error"]["code"] == "not_found"


@pytest.mark.anyio
async def test_body_validation_is_400_with_field_details(bare_client):
    res = await bare_client.post("/items", json={"name": "x", "qty": "many"})
    assert res.status_code == 400
    error = res.json()["error"]
    assert error["code"] == "validation_error"
    assert [d["field"] for d in error["details"]] == ["qty"]


@pytest.mark.anyio
async def test_request_id_is_propagated(bare_client):
    res = await bare_client.get("/missing", headers={"X-Request-ID": "abc123"})
    assert res.headers["x-request-id"] == "abc123"
    assert res.json()["request_id"] == "abc123"
    assert "x-response-time" in res.headers


@pytest.mark.anyio
async def test_request_id_generated_when_absent(client: AsyncClient):
    res = await client.get("/healthz")
    assert res.headers["x-request-id"]


def test_error_codes():
    assert error_code_for(401) == "unauthorized"
    assert error_code_for(599) == "error"
