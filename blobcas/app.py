"""FastAPI application serving a blob repository."""

import logging
import os
from collections.abc import AsyncIterator
from typing import Annotated

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask

from blobcas.__meta__ import __version__
from blobcas.config import Settings
from blobcas.config import settings as default_settings
from blobcas.errors import AliasConflict, BlobStoreError, InvalidAlias, NoContent
from blobcas.ingestor import ContentIngestor
from blobcas.repository import BlobRepository

logger = logging.getLogger(__name__)


async def iter_upload(upload: UploadFile, chunk_size: int) -> AsyncIterator[bytes]:
    """Yield the content of an uploaded file in chunks."""
    while True:
        data = await upload.read(chunk_size)
        if not data:
            break
        yield data


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application, creating the storage directory if needed."""
    settings = settings or default_settings

    repository = BlobRepository(settings.data_dir)
    ingestor = ContentIngestor(repository, chunk_size=settings.chunk_size)

    app = FastAPI(
        title="blobcas",
        description="Content-addressed blob store",
        version=__version__,
    )
    app.state.repository = repository
    app.state.ingestor = ingestor

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(BlobStoreError)
    async def blob_store_error_handler(
        request: Request, exc: BlobStoreError
    ) -> JSONResponse:
        content = {"error": exc.code, "message": exc.message}
        if isinstance(exc, AliasConflict):
            content["id"] = exc.entry.identifier
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        # only the upload form validates its fields, e.g. a text field named file
        fields = {error["loc"][-1] for error in exc.errors() if error.get("loc")}
        if "secret" in fields:
            error: BlobStoreError = InvalidAlias()
        else:
            error = NoContent("No file uploaded")
        return await blob_store_error_handler(request, error)

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "version": __version__}

    @app.post("/post")
    async def post_blob(
        file: Annotated[UploadFile | None, File()] = None,
        secret: Annotated[str | None, Form()] = None,
    ) -> dict[str, str]:
        """Store the uploaded file and return its identifier."""
        if file is None:
            raise NoContent("No file uploaded")

        # blank form fields count as absent
        entry = await ingestor.ingest(
            iter_upload(file, settings.chunk_size), alias=secret or None
        )
        return {"id": entry.identifier}

    @app.get("/get/{identifier}")
    async def get_blob(identifier: str) -> StreamingResponse:
        """Send back the raw bytes `identifier` resolves to."""
        file = await repository.open(identifier)
        size = os.fstat(file.wrapped.fileno()).st_size

        async def content() -> AsyncIterator[bytes]:
            async with file:
                while data := await file.read(settings.chunk_size):
                    yield data

        return StreamingResponse(
            content(),
            media_type="application/octet-stream",
            headers={"Content-Length": str(size)},
            # also closes the file when the body is never sent
            background=BackgroundTask(file.aclose),
        )

    @app.delete("/delete/{identifier}")
    async def delete_blob(identifier: str) -> dict[str, bool]:
        """Delete the entry named `identifier`."""
        await repository.delete(identifier)
        return {"success": True}

    return app
