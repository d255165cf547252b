"""FastAPI adapter: serve a features tree as an ASGI app.

Each discovered feature becomes one route. The incoming Starlette
request is copied into a feature_pipelines Request, the pipeline writes
into a buffered Response, and that is returned as the HTTP response.
Async tasks keep running after the response is returned; the app's
lifespan waits for them on shutdown.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import APIRouter, FastAPI, Request as HttpRequest
from fastapi.responses import Response as HttpResponse

from feature_pipelines.convention import Feature, scan_features
from feature_pipelines.http import Request, Response
from feature_pipelines.pipeline import Pipeline
from feature_pipelines.scheduler import AsyncTaskScheduler, default_scheduler
from feature_pipelines.settings import Settings


def _decode_body(raw: bytes, content_type: str) -> Any:
    if not raw:
        return None
    if "json" in content_type:
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return raw.decode("utf-8", errors="replace")
    if content_type.startswith("text/") or "form-urlencoded" in content_type:
        return raw.decode("utf-8", errors="replace")
    return raw


async def to_request(http_request: HttpRequest) -> Request:
    """Copy a Starlette request into the pipeline's Request model."""
    raw = await http_request.body()
    return Request(
        method=http_request.method,
        path=http_request.url.path,
        params={k: str(v) for k, v in http_request.path_params.items()},
        query=dict(http_request.query_params),
        headers={k.lower(): v for k, v in http_request.headers.items()},
        body=_decode_body(raw, http_request.headers.get("content-type", "")),
    )


def to_http_response(response: Response) -> HttpResponse:
    headers = dict(response.headers)
    media_type = headers.pop("content-type", None)
    return HttpResponse(
        content=response.body,
        status_code=response.status_code,
        headers=headers,
        media_type=media_type,
    )


def make_endpoint(pipeline: Pipeline) -> Callable[[HttpRequest], Awaitable[HttpResponse]]:
    async def endpoint(http_request: HttpRequest) -> HttpResponse:
        request = await to_request(http_request)
        response = Response()
        await pipeline(request, response)
        return to_http_response(response)

    return endpoint


def mount_features(router: FastAPI | APIRouter, features: Iterable[Feature]) -> None:
    """Register one route per feature on *router*."""
    for feature in features:
        router.add_api_route(
            feature.path,
            make_endpoint(feature.pipeline),
            methods=[feature.method],
            name=f"{feature.method} {feature.path}",
            include_in_schema=True,
        )


def create_app(
    features_dir: str | Path,
    *,
    settings: Settings | None = None,
    scheduler: AsyncTaskScheduler | None = None,
    **fastapi_kwargs: Any,
) -> FastAPI:
    """Build a FastAPI app serving every feature under *features_dir*.

    Raises:
        PipelineConfigError: The tree has duplicate orders or routes.
    """
    scheduler = scheduler or default_scheduler
    features = scan_features(features_dir, settings=settings, scheduler=scheduler)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await scheduler.drain()

    app = FastAPI(lifespan=lifespan, **fastapi_kwargs)
    mount_features(app, features)
    app.state.features = features
    return app
