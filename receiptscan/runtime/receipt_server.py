"""FastAPI server that turns uploaded receipt photos into reviewable documents."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse

from receiptscan.application.receipts.process import ReceiptProcessOptions, process_receipt_async
from receiptscan.domain.errors import ConfigInvalid, InvalidImage, OcrEngineError
from receiptscan.runtime.config import Settings, get_settings
from receiptscan.runtime.engine_pool import EnginePool
from receiptscan.runtime.logging import get_logger
from receiptscan.runtime.ocr_engines import create_engine_factory

logger = get_logger(__name__)


def _declared_mime_type(content_type: str | None) -> str | None:
    """Trust image/* content types; anything else (octet-stream, missing) is sniffed."""
    if content_type and content_type.startswith("image/"):
        return content_type.split(";", 1)[0].strip()
    return None


def create_app(settings: Settings | None = None, pool: EnginePool | None = None) -> FastAPI:
    """
    Build the receipt server application.

    Settings and the engine pool are resolved at startup when not given; a
    pool created here is closed on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        resolved = settings or get_settings()
        owned = pool is None
        engine_pool = pool or EnginePool(create_engine_factory(resolved.ocr), max_size=resolved.ocr.max_engines)
        app.state.settings = resolved
        app.state.pool = engine_pool
        logger.info("Receipt server using %s OCR backend (%d engine(s))", resolved.ocr.backend, engine_pool.max_size)
        try:
            yield
        finally:
            if owned:
                engine_pool.close()

    app = FastAPI(title="Receipt Scanner", lifespan=lifespan)

    @app.exception_handler(InvalidImage)
    async def invalid_image_handler(request: Request, exc: InvalidImage) -> JSONResponse:
        logger.warning("Rejected upload: %s", exc)
        return JSONResponse({"status": "error", "error": "invalid_image", "message": str(exc)}, status_code=400)

    @app.exception_handler(ConfigInvalid)
    async def config_invalid_handler(request: Request, exc: ConfigInvalid) -> JSONResponse:
        return JSONResponse({"status": "error", "error": "invalid_options", "message": str(exc)}, status_code=422)

    @app.exception_handler(OcrEngineError)
    async def ocr_engine_handler(request: Request, exc: OcrEngineError) -> JSONResponse:
        logger.error("OCR failed (%s): %s", exc.kind, exc)
        return JSONResponse(
            {"status": "error", "error": exc.kind, "message": str(exc)},
            status_code=504 if exc.is_timeout else 503,
        )

    @app.post("/receipts/process")
    async def process_upload(
        request: Request,
        file: Annotated[UploadFile, File()],
        preset: Annotated[str | None, Form()] = None,
        page_seg_mode: Annotated[str | None, Form()] = None,
        min_item_confidence: Annotated[float | None, Form()] = None,
        min_price_confidence: Annotated[float | None, Form()] = None,
        show_low_confidence: Annotated[bool, Form()] = False,
    ) -> JSONResponse:
        """Process one uploaded receipt image and return the parsed document."""
        app_settings: Settings = request.app.state.settings
        options = ReceiptProcessOptions.from_settings(
            app_settings,
            preprocess_preset=preset,
            page_seg_mode=page_seg_mode,
            min_item_confidence=min_item_confidence,
            min_price_confidence=min_price_confidence,
        )

        contents = await file.read()
        logger.debug("Received %s (%d bytes, %s)", file.filename, len(contents), file.content_type)
        document = await process_receipt_async(
            contents,
            options,
            mime_type=_declared_mime_type(file.content_type),
            pool=request.app.state.pool,
            settings=app_settings,
        )
        return JSONResponse(
            {
                "status": "success",
                "document": document.to_dict(include_low_confidence=show_low_confidence),
            }
        )

    @app.get("/health")
    async def health(request: Request) -> dict[str, object]:
        """Health check endpoint."""
        engine_pool: EnginePool = request.app.state.pool
        return {"status": "ok", "engines": engine_pool.size, "maxEngines": engine_pool.max_size}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="127.0.0.1", port=8000)
