"""
Application fixtures for the HTTP-level tests.

Each test gets a fresh application backed by an in-process counter store.
A small demo router puts one route behind each kind of gate dependency, and a
test-only auth middleware turns ``X-Test-User`` / ``X-Test-Tier`` headers into
``request.state.user`` the way the real auth layer would.
"""

import pytest
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.testclient import TestClient

from shopguard.core.application import create_application
from shopguard.core.rate_limit import (
    default_rate_limit,
    endpoint_rate_limit,
    named_rate_limit,
    rate_limit,
    tiered_rate_limit,
)
from shopguard.domain.rate_limiting.repositories import CounterStore
from shopguard.infrastructure.repositories.in_memory_counter_store import InMemoryCounterStore


def build_demo_router() -> APIRouter:
    router = APIRouter(prefix="/demo")

    @router.get("/static", dependencies=[Depends(rate_limit(3, 60, message="Slow down"))])
    async def static_route():
        return {"ok": True}

    @router.get("/login", dependencies=[Depends(rate_limit(3, 60))])
    async def login_route():
        return {"ok": True}

    @router.get("/browse", dependencies=[Depends(rate_limit(100, 60))])
    async def browse_route():
        return {"ok": True}

    @router.get("/endpoint", dependencies=[Depends(endpoint_rate_limit("search", 2, 60))])
    async def endpoint_route():
        return {"ok": True}

    @router.get("/tiered", dependencies=[Depends(tiered_rate_limit())])
    async def tiered_route():
        return {"ok": True}

    @router.get("/named", dependencies=[Depends(named_rate_limit("checkout"))])
    async def named_route():
        return {"ok": True}

    @router.api_route("/default", methods=["GET", "POST"], dependencies=[Depends(default_rate_limit())])
    async def default_route():
        return {"ok": True}

    return router


async def fake_auth_middleware(request: Request, call_next):
    user_id = request.headers.get("X-Test-User")
    if user_id:
        request.state.user = {"id": user_id, "tier": request.headers.get("X-Test-Tier", "user")}
    return await call_next(request)


def build_app(store: CounterStore) -> FastAPI:
    app = create_application(counter_store=store)
    app.include_router(build_demo_router())
    app.middleware("http")(fake_auth_middleware)
    return app


@pytest.fixture
def make_app():
    return build_app


@pytest.fixture
def counter_store():
    return InMemoryCounterStore()


@pytest.fixture
def app(counter_store):
    return build_app(counter_store)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def container(client, app):
    """The admission-control container built by the running lifespan."""
    return app.state.rate_limiting


@pytest.fixture
def admin_headers():
    return {"X-Test-User": "ops", "X-Test-Tier": "admin"}
