from dataclasses import dataclass
from pathlib import Path
from typing import Protocol


PDF_CONTENT_TYPE = "application/pdf"


class ConverterGateway(Protocol):
    async def convert(self, input_path: Path, output_dir: Path) -> Path:
        """Render input_path to PDF inside output_dir and return the PDF path."""

    def expected_output_path(self, input_path: Path, output_dir: Path) -> Path:
        ...


class ObjectStoreGateway(Protocol):
    async def fetch(self, key: str, local_path: Path) -> None:
        ...

    async def store(self, local_path: Path, key: str, content_type: str = PDF_CONTENT_TYPE) -> None:
        ...


@dataclass(frozen=True)
class ConversionRequest:
    source_key: str
    destination_key: str | None = None


@dataclass(frozen=True)
class ConversionResult:
    destination_key: str
