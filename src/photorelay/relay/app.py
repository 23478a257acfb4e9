"""FastAPI application exposing the relay endpoint.

Routes
------

* ``POST /upload`` (alias ``POST /api/upload``) -- ``multipart/form-data``
  with one or more ``file`` parts.  See :mod:`photorelay.relay.service`
  for the response bodies.
* ``GET /health`` -- liveness plus whether Media Store credentials are set.

Run with any ASGI server, e.g.::

    uvicorn photorelay.relay.app:create_app --factory
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from photorelay.config import PhotoRelayConfig
from photorelay.errors import ErrorCode
from photorelay.models import IncomingFile
from photorelay.observability import get_logger
from photorelay.relay.media_store import CloudinaryMediaStore, MediaStore
from photorelay.relay.service import RelayService

log = get_logger("photorelay.relay")

UPLOAD_FIELD = "file"


async def _read_files(request: Request, max_size_bytes: int) -> list[IncomingFile]:
    """Collect every ``file`` part of the request's form.

    Text values sent under the ``file`` name are ignored; a request with no
    file parts yields an empty list.  A part larger than *max_size_bytes*
    is not read: it comes back with empty data and its declared size.
    """
    form = await request.form()
    files: list[IncomingFile] = []
    try:
        for part in form.getlist(UPLOAD_FIELD):
            if isinstance(part, str):
                continue
            filename = part.filename or ""
            content_type = part.content_type or ""
            if part.size is not None and part.size > max_size_bytes:
                files.append(
                    IncomingFile(filename, content_type, data=b"", declared_size=part.size)
                )
                continue
            data = await part.read()
            files.append(IncomingFile(filename, content_type, data=data))
    finally:
        await form.close()
    return files


def create_app(
    config: PhotoRelayConfig | None = None,
    store: MediaStore | None = None,
) -> FastAPI:
    """Build the relay application.

    Parameters
    ----------
    config:
        Relay configuration.  Defaults to :meth:`PhotoRelayConfig.from_env`.
    store:
        Media Store to forward to.  Defaults to a
        :class:`CloudinaryMediaStore` built from *config*, which the app
        closes on shutdown.
    """
    config = config or PhotoRelayConfig.from_env()
    owns_store = store is None
    if store is None:
        if not config.store_configured:
            log.warning(
                "Media Store credentials are not configured",
                extra={"extra_fields": {"op": "startup", "config": repr(config)}},
            )
        store = CloudinaryMediaStore(config)
    service = RelayService(config, store)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        if owns_store:
            await service.store.close()

    app = FastAPI(title="photorelay", lifespan=lifespan)
    app.state.relay = service

    @app.exception_handler(Exception)
    async def unhandled_exception(request: Request, exc: Exception) -> JSONResponse:
        log.exception(
            "Unhandled error",
            extra={"extra_fields": {"op": "relay", "path": request.url.path}},
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "Upload failed",
                "details": str(exc) or type(exc).__name__,
                "code": ErrorCode.RELAY_ERROR.value,
            },
        )

    @app.post("/upload")
    @app.post("/api/upload")
    async def upload(request: Request) -> JSONResponse:
        files = await _read_files(request, config.max_file_size_bytes)
        response = await service.handle(files)
        return JSONResponse(status_code=response.status_code, content=response.body)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "storeConfigured": config.store_configured,
            "multiFile": config.multi_file,
        }

    return app
