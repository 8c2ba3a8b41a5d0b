import asyncio
import logging
import os
import shutil
import signal
import threading
from pathlib import Path
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..config import Settings
from .errors import ConversionTimeout, EngineFailure, NotFound, OutputMissing, SpawnError, TransferError
from .interfaces import ConverterGateway, ObjectStoreGateway, PDF_CONTENT_TYPE
from .tempfiles import tmp_file_name


logger = logging.getLogger(__name__)

_MISSING_KEY_CODES = {"404", "NoSuchKey", "NotFound"}


class TransferAborted(Exception):
    """Raised from a transfer progress callback once the request is cancelled."""


def build_s3_client(settings: Settings) -> Any:
    config = Config(
        region_name=settings.aws_region,
        retries={
            "max_attempts": settings.s3_max_attempts,
            "mode": "standard",
        },
    )
    return boto3.session.Session().client("s3", endpoint_url=settings.s3_endpoint_url, config=config)


class S3ObjectStore(ObjectStoreGateway):
    """Streams objects between one S3 bucket and local files.

    boto3 is blocking, so every transfer runs in a worker thread. When the
    awaiting task is cancelled the thread is told to stop through the
    transfer's progress callback, which raises on the next chunk.
    """

    def __init__(self, bucket: str, client: Any) -> None:
        self._bucket = bucket
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "S3ObjectStore":
        return cls(settings.s3_bucket, build_s3_client(settings))

    async def fetch(self, key: str, local_path: Path) -> None:
        await self._run_transfer(self._download, key, Path(local_path))

    async def store(self, local_path: Path, key: str, content_type: str = PDF_CONTENT_TYPE) -> None:
        await self._run_transfer(self._upload, Path(local_path), key, content_type)

    async def _run_transfer(self, fn: Any, *args: Any) -> None:
        abort = threading.Event()
        try:
            await asyncio.to_thread(fn, *args, abort)
        except asyncio.CancelledError:
            abort.set()
            raise

    @staticmethod
    def _progress(abort: threading.Event):
        def callback(_bytes_transferred: int) -> None:
            if abort.is_set():
                raise TransferAborted("transfer cancelled")
        return callback

    def _download(self, key: str, local_path: Path, abort: threading.Event) -> None:
        # The thread may start after the request already cleaned up its files
        if abort.is_set():
            raise TransferAborted("transfer cancelled")
        try:
            with local_path.open("wb") as f_out:
                self._client.download_fileobj(self._bucket, key, f_out, Callback=self._progress(abort))
        except TransferAborted:
            local_path.unlink(missing_ok=True)
            raise
        except ClientError as exc:
            error_code = str(exc.response.get("Error", {}).get("Code", ""))
            if error_code in _MISSING_KEY_CODES:
                raise NotFound(f"The specified key does not exist: {key}") from exc
            logger.error("S3 download of %s failed: %s", key, exc)
            raise TransferError(f"Failed to download {key} from object store") from exc
        except (BotoCoreError, OSError) as exc:
            logger.error("S3 download of %s failed: %s", key, exc)
            raise TransferError(f"Failed to download {key} from object store") from exc
        if abort.is_set():
            local_path.unlink(missing_ok=True)

    def _upload(self, local_path: Path, key: str, content_type: str, abort: threading.Event) -> None:
        try:
            with local_path.open("rb") as f_in:
                self._client.upload_fileobj(
                    f_in,
                    self._bucket,
                    key,
                    ExtraArgs={"ContentType": content_type},
                    Callback=self._progress(abort),
                )
        except (ClientError, BotoCoreError, OSError) as exc:
            logger.error("S3 upload to %s failed: %s", key, exc)
            raise TransferError(f"Failed to upload {key} to object store") from exc


class SofficeConverter(ConverterGateway):
    """Runs LibreOffice headless as a subprocess to produce a PDF."""

    ARGS = (
        "--headless",
        "--invisible",
        "--nologo",
        "--nodefault",
        "--nolockcheck",
        "--nofirststartwizard",
    )

    # Rendering overrides applied on top of the service environment
    ENV_OVERRIDES = {
        "OPENOFFICE_HOME": "",
        "OO_SKIP_NATIVITY_LOADER": "1",
        "SAL_USE_VCLPLUGIN": "sv",
        "SAL_DISABLE_OPENCL": "1",
        "SAL_DISABLE_FONTCONFIG": "0",
        "GDK_SCALE": "1",
        "GDK_DPI_SCALE": "1",
    }

    def __init__(self, binary: str = "soffice", *, timeout: float = 180, kill_grace: float = 5) -> None:
        self._binary = binary
        self._timeout = timeout
        self._kill_grace = kill_grace

    @classmethod
    def from_settings(cls, settings: Settings) -> "SofficeConverter":
        return cls(settings.soffice_bin, timeout=settings.conversion_timeout_sec)

    def command(self, input_path: Path, output_dir: Path, profile_dir: Path | None = None) -> list[str]:
        args = [self._binary]
        if profile_dir is not None:
            args.append(f"-env:UserInstallation={Path(profile_dir).resolve().as_uri()}")
        return [
            *args,
            *self.ARGS,
            "--convert-to",
            "pdf",
            str(input_path),
            "--outdir",
            str(output_dir),
        ]

    def expected_output_path(self, input_path: Path, output_dir: Path) -> Path:
        return Path(output_dir) / f"{Path(input_path).stem}.pdf"

    async def convert(self, input_path: Path, output_dir: Path) -> Path:
        # One user profile per run: instances sharing a profile hand the job to
        # each other and exit 0 without writing the PDF
        profile_dir = tmp_file_name(Path(output_dir), "lo-profile", "")
        try:
            return await self._run(input_path, output_dir, profile_dir)
        finally:
            self._remove_profile(profile_dir)

    async def _run(self, input_path: Path, output_dir: Path, profile_dir: Path) -> Path:
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.command(input_path, output_dir, profile_dir),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
                env={**os.environ, **self.ENV_OVERRIDES},
                start_new_session=True,
            )
        except OSError as exc:
            logger.error("Could not start %s: %s", self._binary, exc)
            raise SpawnError("Conversion engine could not be started") from exc

        try:
            returncode = await asyncio.wait_for(proc.wait(), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning("LibreOffice pid %s exceeded %ss, terminating", proc.pid, self._timeout)
            await self._terminate(proc)
            raise ConversionTimeout(f"Conversion timeout: exceeded {self._timeout:g} seconds") from None
        except asyncio.CancelledError:
            logger.warning("Conversion cancelled, terminating LibreOffice pid %s", proc.pid)
            await self._terminate(proc)
            raise

        if returncode != 0:
            raise EngineFailure(returncode)

        pdf_path = self.expected_output_path(input_path, output_dir)
        if not pdf_path.exists():
            raise OutputMissing("PDF not found after conversion")
        return pdf_path

    @staticmethod
    def _remove_profile(profile_dir: Path) -> None:
        if not profile_dir.exists():
            return
        try:
            shutil.rmtree(profile_dir)
        except OSError as e:
            logger.warning("Failed to remove LibreOffice profile %s: %s", profile_dir, e)

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        # Signal the whole session: soffice forks soffice.bin
        self._signal_group(proc, signal.SIGTERM)
        try:
            await asyncio.wait_for(proc.wait(), timeout=self._kill_grace)
        except asyncio.TimeoutError:
            self._signal_group(proc, signal.SIGKILL)
            await proc.wait()

    @staticmethod
    def _signal_group(proc: asyncio.subprocess.Process, sig: int) -> None:
        try:
            os.killpg(proc.pid, sig)
        except ProcessLookupError:
            pass
