"""
Domain layer for presentation to PDF conversion.
Provides interfaces (gateways), adapters for S3 and LibreOffice, and a service
that sequences download, conversion and upload so the HTTP front-end stays a
thin mapping layer.
"""

from .errors import (
    BadRequest,
    ConversionError,
    ConversionTimeout,
    EngineFailure,
    NotFound,
    OutputMissing,
    ServiceBusy,
    SpawnError,
    TransferError,
)
from .interfaces import ConversionRequest, ConversionResult, ConverterGateway, ObjectStoreGateway
from .service import ConversionService, default_destination_key
from .tempfiles import tmp_file_name
