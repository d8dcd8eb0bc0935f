# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
FastAPI adapter for the polling, diagnostics, model-stats and consumer
endpoints.

Install with: pip install llm-resilience[api]
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, Query
from fastapi.responses import JSONResponse

from ..service import ResilienceService
from .handlers import (
    EndpointResponse,
    get_diagnostics,
    get_model_stats,
    poll_request,
    run_consumer_tick,
)


def _render(result: EndpointResponse) -> JSONResponse:
    return JSONResponse(status_code=result.status_code, content=result.body)


def create_router(service: ResilienceService) -> APIRouter:
    """Routes bound to one service instance."""
    router = APIRouter(tags=["resilience"])

    # Registered before the polling route so "process" is not taken for an id
    @router.post("/rate-retry/process")
    async def process_queue() -> JSONResponse:
        return _render(await run_consumer_tick(service.consumer))

    @router.get("/rate-retry/{request_id}")
    async def poll(request_id: str) -> JSONResponse:
        return _render(await poll_request(service.responses, request_id))

    @router.get("/diagnostics")
    async def diagnostics() -> JSONResponse:
        return _render(await get_diagnostics(service.queues, service.metrics))

    @router.get("/model-stats/{classification}")
    async def model_stats(classification: str, tokens: int = Query(0, ge=0)) -> JSONResponse:
        return _render(await get_model_stats(service.ledger, classification, tokens))

    return router


def create_app(service: ResilienceService, manage_lifecycle: bool = True) -> FastAPI:
    """
    A FastAPI application exposing the service's endpoints.

    With ``manage_lifecycle`` the application starts the service (store
    connection and background consumer) on startup and stops it on shutdown.
    """

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        if manage_lifecycle:
            await service.start()
        try:
            yield
        finally:
            if manage_lifecycle:
                await service.stop()

    app = FastAPI(title="LLM Resilience", lifespan=lifespan)
    app.include_router(create_router(service))
    return app


__all__ = ["create_app", "create_router"]
