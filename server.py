from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import httpx
from fastapi import Body, FastAPI, HTTPException, Request
from pydantic import BaseModel

from web_toolkit.settings import Settings, build_http_client, load_settings
from web_toolkit.tools import ToolRegistry, UnknownToolError, build_registry

from logging import getLogger

logger = getLogger("web_toolkit.server")


# -----------------------
# Response
# -----------------------


class ToolOut(BaseModel):
    name: str
    group: str
    description: str
    input_schema: Dict[str, Any]


class ToolListResponse(BaseModel):
    tools: List[ToolOut]


# -----------------------
# App + Lifespan
# -----------------------


def create_app(
    settings: Optional[Settings] = None,
    client_factory: Optional[Callable[[Settings], httpx.AsyncClient]] = None,
) -> FastAPI:
    """
    settings / client_factory はテストで差し替える用。
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        cfg = app.state.settings or load_settings()
        app.state.settings = cfg
        factory = client_factory or build_http_client
        # 検索/取得で1つのコネクションプールを共有
        app.state.http_client = factory(cfg)
        app.state.registry = build_registry(app.state.http_client, cfg)
        try:
            yield
        finally:
            await app.state.http_client.aclose()
            app.state.http_client = None

    app = FastAPI(title="web-toolkit-server", lifespan=lifespan)
    app.state.settings = settings
    app.state.http_client = None
    app.state.registry = None

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        logger.info(f"[REQUEST] {request.method} {request.url.path}")
        try:
            response = await call_next(request)
        except Exception as e:
            elapsed = time.perf_counter() - start
            logger.error(
                f"[RESPONSE] {request.method} {request.url.path} | Status: ERROR "
                f"| Duration: {elapsed:.3f}s | Error: {e!r}"
            )
            raise
        elapsed = time.perf_counter() - start
        logger.info(
            f"[RESPONSE] {request.method} {request.url.path} | "
            f"Status: {response.status_code} | Duration: {elapsed:.3f}s"
        )
        return response

    @app.get("/tools", response_model=ToolListResponse)
    async def list_tools() -> ToolListResponse:
        registry = _registry(app)
        return ToolListResponse(tools=[ToolOut(**t) for t in registry.describe()])

    @app.post("/tools/{name}")
    async def call_tool(
        name: str, arguments: Optional[Dict[str, Any]] = Body(default=None)
    ) -> Dict[str, Any]:
        """
        POST /tools/search
        body: { "query": "...", "time_range": "w" }
        response: { "message": ..., "results": [...] } or { "error_message": ... }
        """
        registry = _registry(app)
        try:
            return await registry.call(name, arguments)
        except UnknownToolError:
            raise HTTPException(status_code=404, detail=f"unknown tool: {name}")

    return app


def _registry(app: FastAPI) -> ToolRegistry:
    registry: Optional[ToolRegistry] = app.state.registry
    assert registry is not None, "server is not started"
    return registry


app = create_app()
