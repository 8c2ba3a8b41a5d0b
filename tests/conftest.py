"""
Pytest fixtures and fakes shared by the conversion service tests.
"""

import asyncio
import os
import stat
from pathlib import Path

import pytest

from pptx_pdf_service.conversion import ConversionService, NotFound, TransferError
from pptx_pdf_service.conversion.interfaces import PDF_CONTENT_TYPE


class FakeObjectStore:
    """In-memory object store recording every transfer."""

    def __init__(self, objects: dict[str, bytes] | None = None) -> None:
        self.objects = dict(objects or {})
        self.fetched: list[str] = []
        self.stored: list[tuple[str, str]] = []
        self.fail_store = False
        self.fetch_delay = 0.0
        self.store_delay = 0.0
        self.cancelled = False

    async def _wait(self, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise

    async def fetch(self, key: str, local_path: Path) -> None:
        self.fetched.append(key)
        await self._wait(self.fetch_delay)
        if key not in self.objects:
            raise NotFound(f"The specified key does not exist: {key}")
        Path(local_path).write_bytes(self.objects[key])

    async def store(self, local_path: Path, key: str, content_type: str = PDF_CONTENT_TYPE) -> None:
        await self._wait(self.store_delay)
        if self.fail_store:
            raise TransferError(f"Failed to upload {key} to object store")
        self.objects[key] = Path(local_path).read_bytes()
        self.stored.append((key, content_type))


class FakeConverter:
    """Writes `%PDF-` followed by the input bytes next to the input file.

    `error` is raised after writing partial output; `gate` (an asyncio.Event)
    holds the conversion until it is set.
    """

    def __init__(self, *, error: Exception | None = None, delay: float = 0, gate: asyncio.Event | None = None) -> None:
        self.error = error
        self.delay = delay
        self.gate = gate
        self.calls: list[Path] = []
        self.cancelled = False
        self.active = 0
        self.max_active = 0

    def expected_output_path(self, input_path: Path, output_dir: Path) -> Path:
        return Path(output_dir) / f"{Path(input_path).stem}.pdf"

    async def convert(self, input_path: Path, output_dir: Path) -> Path:
        self.calls.append(Path(input_path))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        out = self.expected_output_path(input_path, output_dir)
        try:
            if self.gate is not None:
                await self.gate.wait()
            await asyncio.sleep(self.delay)
            if self.error is not None:
                out.write_bytes(b"partial")
                raise self.error
            out.write_bytes(b"%PDF-" + Path(input_path).read_bytes())
            return out
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        finally:
            self.active -= 1


@pytest.fixture
def store() -> FakeObjectStore:
    return FakeObjectStore({"decks/q1.pptx": b"q1 slides", "decks/q2.pptx": b"q2 slides"})


@pytest.fixture
def converter() -> FakeConverter:
    return FakeConverter()


@pytest.fixture
def work_dir(tmp_path: Path) -> Path:
    d = tmp_path / "work"
    d.mkdir()
    return d


@pytest.fixture
def service(store: FakeObjectStore, converter: FakeConverter, work_dir: Path) -> ConversionService:
    return ConversionService(store, converter, tmp_dir=work_dir, request_timeout=5)


@pytest.fixture
def make_engine(tmp_path: Path):
    """Create an executable shell script standing in for soffice."""

    def _make(body: str, name: str = "soffice") -> Path:
        script = tmp_path / name
        script.write_text("#!/bin/sh\n" + body)
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return script

    return _make


def pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    return True
