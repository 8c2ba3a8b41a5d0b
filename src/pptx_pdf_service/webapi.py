import asyncio
import logging
import sys

import psutil
from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import AliasChoices, BaseModel, Field

from pptx_pdf_service import __version__
from pptx_pdf_service.config import ConfigError, Settings, configure_logging
from pptx_pdf_service.conversion import ConversionError, ConversionRequest, ConversionService
from pptx_pdf_service.conversion.adapters import S3ObjectStore, SofficeConverter


logger = logging.getLogger(__name__)

SERVICE_NAME = "PPTX to PDF Converter"

app = FastAPI(
    title=SERVICE_NAME,
    version=__version__,
    description=(
        "Converts presentations stored in S3 to PDF with LibreOffice and "
        "uploads the result back to the bucket."
    ),
)


class HealthCheckFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        return "/health" not in record.getMessage()


logging.getLogger("uvicorn.access").addFilter(HealthCheckFilter())


class ConvertBody(BaseModel):
    source_key: str | None = Field(default=None, validation_alias=AliasChoices("sourceKey", "s3Key"))
    output_key: str | None = Field(default=None, validation_alias="outputKey")


SETTINGS: Settings | None = None
SERVICE: ConversionService | None = None
MEMORY_TASK: asyncio.Task | None = None


def build_service(settings: Settings) -> ConversionService:
    settings.tmp_dir.mkdir(parents=True, exist_ok=True)
    store = S3ObjectStore.from_settings(settings)
    converter = SofficeConverter.from_settings(settings)
    return ConversionService.from_settings(settings, store, converter)


def log_memory_usage() -> float:
    """Log and return the resident set size of this process in MB."""
    rss_mb = round(psutil.Process().memory_info().rss / (1024 * 1024), 2)
    logger.info("Memory: %s MB", rss_mb)
    return rss_mb


async def _memory_logger(interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            log_memory_usage()
        except psutil.Error as e:
            logger.warning("Memory check failed: %s", e)


@app.on_event("startup")
async def _startup() -> None:
    global SETTINGS, SERVICE, MEMORY_TASK
    if SETTINGS is None:
        SETTINGS = Settings.from_env()
    if SERVICE is None:
        SERVICE = build_service(SETTINGS)
    MEMORY_TASK = asyncio.create_task(_memory_logger(SETTINGS.memory_log_interval_sec))
    logger.info("PPTX->PDF service ready (bucket=%s, region=%s)", SETTINGS.s3_bucket, SETTINGS.aws_region)


@app.on_event("shutdown")
async def _shutdown() -> None:
    global MEMORY_TASK
    if MEMORY_TASK is not None:
        MEMORY_TASK.cancel()
        MEMORY_TASK = None


@app.exception_handler(ConversionError)
async def _conversion_error_handler(request: Request, exc: ConversionError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Request body must be a JSON object with sourceKey"})


@app.post("/convert")
async def convert(body: ConvertBody) -> dict[str, str]:
    """Convert `sourceKey` to PDF and upload it to `outputKey`.

    When `outputKey` is omitted the PDF is stored next to the source with its
    extension replaced by `.pdf`. Returns the key the PDF was written to.
    """
    global SERVICE
    assert SERVICE is not None
    result = await SERVICE.convert(ConversionRequest(source_key=body.source_key or "", destination_key=body.output_key or None))
    return {"destinationKey": result.destination_key}


@app.get("/health", response_class=PlainTextResponse)
def health() -> PlainTextResponse:
    return PlainTextResponse("ok")


@app.get("/")
def index() -> dict[str, object]:
    return {
        "service": SERVICE_NAME,
        "version": __version__,
        "status": "running",
        "endpoints": {
            "health": "GET /health",
            "convert": "POST /convert",
        },
    }


def run() -> None:
    """Run the service with uvicorn.

    Reads `.env` if present, then exits with status 1 before binding the port
    when AWS_REGION or S3_BUCKET is missing.
    """
    import uvicorn

    load_dotenv()
    try:
        settings = Settings.from_env()
    except ConfigError as e:
        configure_logging()
        logger.error("Invalid configuration: %s", e)
        sys.exit(1)

    configure_logging(settings.log_level)
    logger.info("PPTX->PDF service listening on %s", settings.port)
    uvicorn.run("pptx_pdf_service.webapi:app", host=settings.host, port=settings.port, reload=settings.reload)


if __name__ == "__main__":
    run()
