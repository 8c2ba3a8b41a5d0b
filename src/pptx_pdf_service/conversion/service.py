import asyncio
import logging
import re
import time
from pathlib import Path, PurePosixPath

from ..config import Settings
from .errors import BadRequest, ConversionError, ConversionTimeout, ServiceBusy
from .interfaces import ConversionRequest, ConversionResult, ConverterGateway, ObjectStoreGateway, PDF_CONTENT_TYPE
from .tempfiles import tmp_file_name


logger = logging.getLogger(__name__)

DEFAULT_INPUT_EXT = ".pptx"

_KEY_EXTENSION = re.compile(r"\.[^/.]+/*$")
_LOCAL_EXTENSION = re.compile(r"\.[A-Za-z0-9]{1,10}")


def default_destination_key(source_key: str) -> str:
    """Replace the final extension of source_key with `.pdf`.

    `decks/q1.pptx` becomes `decks/q1.pdf`; a key without an extension gets
    `.pdf` appended so the source object is never overwritten.
    """
    if not _KEY_EXTENSION.search(source_key):
        return f"{source_key}.pdf"
    return _KEY_EXTENSION.sub(".pdf", source_key)


def _local_extension(source_key: str) -> str:
    ext = PurePosixPath(source_key.strip()).suffix
    return ext if _LOCAL_EXTENSION.fullmatch(ext) else DEFAULT_INPUT_EXT


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _safe_unlink(*paths: Path | None) -> None:
    for p in paths:
        if p is None:
            continue
        try:
            p.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Failed to remove temp file %s: %s", p, e)


class ConversionService:
    """Runs one conversion request: download, convert, upload.

    The service is framework-agnostic; the HTTP layer only maps its
    ConversionError subclasses to responses. Pipelines are admitted through a
    semaphore so only a bounded number of LibreOffice processes run at once,
    and a bounded number of requests may wait for a slot.
    """

    def __init__(
        self,
        store: ObjectStoreGateway,
        converter: ConverterGateway,
        *,
        tmp_dir: Path,
        request_timeout: float = 240,
        max_concurrent: int = 2,
        max_pending: int = 8,
    ) -> None:
        self._store = store
        self._converter = converter
        self._tmp_dir = Path(tmp_dir)
        self._request_timeout = request_timeout
        self._max_pending = max_pending
        self._slots = asyncio.Semaphore(max_concurrent)
        self._pending = 0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: ObjectStoreGateway,
        converter: ConverterGateway,
    ) -> "ConversionService":
        return cls(
            store,
            converter,
            tmp_dir=settings.tmp_dir,
            request_timeout=settings.request_timeout_sec,
            max_concurrent=settings.max_concurrent_conversions,
            max_pending=settings.max_pending_conversions,
        )

    @property
    def pending(self) -> int:
        return self._pending

    async def convert(self, request: ConversionRequest) -> ConversionResult:
        # Keys are used verbatim, surrounding spaces included
        source_key = request.source_key or ""
        if not source_key.strip():
            raise BadRequest("sourceKey required")
        destination_key = request.destination_key if (request.destination_key or "").strip() else None

        try:
            return await asyncio.wait_for(
                self._admit_and_run(source_key, destination_key),
                timeout=self._request_timeout,
            )
        except asyncio.TimeoutError:
            logger.error("Request for %s exceeded %ss, in-flight work cancelled", source_key, self._request_timeout)
            raise ConversionTimeout("Request timeout: service took too long to respond") from None
        except ConversionError as e:
            logger.error("Conversion error for %s (%s): %s", source_key, e.kind, e.message)
            raise
        except Exception as e:
            logger.exception("Unexpected failure converting %s", source_key)
            raise ConversionError("Conversion failed") from e

    async def _admit_and_run(self, source_key: str, destination_key: str | None) -> ConversionResult:
        if self._slots.locked() and self._pending >= self._max_pending:
            raise ServiceBusy("Too many conversions in progress, try again later")

        self._pending += 1
        try:
            await self._slots.acquire()
        finally:
            self._pending -= 1

        try:
            return await self._run(source_key, destination_key)
        finally:
            self._slots.release()

    async def _run(self, source_key: str, destination_key: str | None) -> ConversionResult:
        input_path = tmp_file_name(self._tmp_dir, "input", _local_extension(source_key))
        output_dir = input_path.parent
        # Removed on every exit path, including a timeout that left partial output
        output_path = self._converter.expected_output_path(input_path, output_dir)
        pdf_path: Path | None = None
        try:
            logger.info("Downloading from S3: %s", source_key)
            start = time.monotonic()
            await self._store.fetch(source_key, input_path)
            logger.info("Downloaded %s in %dms", source_key, _elapsed_ms(start))

            logger.info("Converting with LibreOffice: %s", input_path.name)
            start = time.monotonic()
            pdf_path = await self._converter.convert(input_path, output_dir)
            logger.info("Converted %s in %dms", input_path.name, _elapsed_ms(start))

            dest_key = destination_key or default_destination_key(source_key)
            logger.info("Uploading PDF to S3: %s", dest_key)
            start = time.monotonic()
            await self._store.store(pdf_path, dest_key, PDF_CONTENT_TYPE)
            logger.info("Uploaded %s in %dms", dest_key, _elapsed_ms(start))

            return ConversionResult(destination_key=dest_key)
        finally:
            _safe_unlink(input_path, output_path, pdf_path)
