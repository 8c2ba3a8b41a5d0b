"""
Unit tests for the HTTP surface (pptx_pdf_service.webapi).
"""

import logging

import pytest
from fastapi.testclient import TestClient

from pptx_pdf_service import webapi
from pptx_pdf_service.conversion import (
    ConversionError,
    ConversionService,
    ConversionTimeout,
    EngineFailure,
    OutputMissing,
    ServiceBusy,
    SpawnError,
    TransferError,
)

from conftest import FakeConverter


@pytest.fixture
def client(monkeypatch, service) -> TestClient:
    monkeypatch.setattr(webapi, "SERVICE", service)
    return TestClient(webapi.app)


class RaisingService:
    def __init__(self, error: Exception) -> None:
        self.error = error

    async def convert(self, request):
        raise self.error


def test_health_returns_ok(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.text == "ok"


def test_health_independent_of_conversion_state(monkeypatch):
    monkeypatch.setattr(webapi, "SERVICE", RaisingService(ConversionError("Conversion failed")))
    response = TestClient(webapi.app).get("/health")

    assert response.status_code == 200
    assert response.text == "ok"


def test_index_describes_service(client):
    data = client.get("/").json()

    assert data["service"] == "PPTX to PDF Converter"
    assert data["status"] == "running"
    assert data["version"] == webapi.__version__
    assert data["endpoints"] == {"health": "GET /health", "convert": "POST /convert"}


def test_convert_returns_destination_key(client, store):
    response = client.post("/convert", json={"sourceKey": "decks/q1.pptx"})

    assert response.status_code == 200
    assert response.json() == {"destinationKey": "decks/q1.pdf"}
    assert store.objects["decks/q1.pdf"] == b"%PDF-q1 slides"


def test_convert_with_output_key(client):
    response = client.post("/convert", json={"sourceKey": "decks/q1.pptx", "outputKey": "pdfs/q1-final.pdf"})

    assert response.status_code == 200
    assert response.json() == {"destinationKey": "pdfs/q1-final.pdf"}


def test_convert_accepts_legacy_s3_key(client):
    response = client.post("/convert", json={"s3Key": "decks/q2.pptx"})

    assert response.status_code == 200
    assert response.json() == {"destinationKey": "decks/q2.pdf"}


@pytest.mark.parametrize("body", [{}, {"sourceKey": ""}, {"outputKey": "x.pdf"}])
def test_convert_without_source_key_is_400(client, store, converter, body):
    response = client.post("/convert", json=body)

    assert response.status_code == 400
    assert "sourceKey" in response.json()["error"]
    assert store.fetched == []
    assert converter.calls == []


@pytest.mark.parametrize("content", [b"not json", b"[1, 2]", b""])
def test_convert_with_malformed_body_is_400(client, content):
    response = client.post("/convert", content=content, headers={"Content-Type": "application/json"})

    assert response.status_code == 400
    assert "error" in response.json()


def test_convert_missing_object_is_404(client, converter):
    response = client.post("/convert", json={"sourceKey": "decks/missing.pptx"})

    assert response.status_code == 404
    assert "does not exist" in response.json()["error"]
    assert converter.calls == []


def test_convert_engine_failure_is_500(monkeypatch, store, work_dir):
    service = ConversionService(store, FakeConverter(error=EngineFailure(1)), tmp_dir=work_dir)
    monkeypatch.setattr(webapi, "SERVICE", service)

    response = TestClient(webapi.app).post("/convert", json={"sourceKey": "decks/q1.pptx"})

    assert response.status_code == 500
    assert response.json() == {"error": "LibreOffice exited with code 1"}
    assert list(work_dir.iterdir()) == []


def test_convert_request_timeout_is_504(monkeypatch, store, work_dir):
    converter = FakeConverter(delay=10)
    service = ConversionService(store, converter, tmp_dir=work_dir, request_timeout=0.2)
    monkeypatch.setattr(webapi, "SERVICE", service)

    response = TestClient(webapi.app).post("/convert", json={"sourceKey": "decks/q1.pptx"})

    assert response.status_code == 504
    assert response.json()["error"].startswith("Request timeout")
    assert converter.cancelled is True
    assert list(work_dir.iterdir()) == []


@pytest.mark.parametrize(
    "error, status",
    [
        (ConversionTimeout("Conversion timeout: exceeded 180 seconds"), 504),
        (SpawnError("Conversion engine could not be started"), 500),
        (OutputMissing("PDF not found after conversion"), 500),
        (TransferError("Failed to upload decks/q1.pdf to object store"), 500),
        (ServiceBusy("Too many conversions in progress, try again later"), 503),
        (ConversionError("Conversion failed"), 500),
    ],
)
def test_errors_map_to_status_codes(monkeypatch, error, status):
    monkeypatch.setattr(webapi, "SERVICE", RaisingService(error))

    response = TestClient(webapi.app).post("/convert", json={"sourceKey": "decks/q1.pptx"})

    assert response.status_code == status
    assert response.json() == {"error": error.message}


def test_log_memory_usage(caplog):
    with caplog.at_level(logging.INFO, logger="pptx_pdf_service.webapi"):
        rss_mb = webapi.log_memory_usage()

    assert rss_mb > 0
    assert "Memory:" in caplog.text


def test_health_check_filter_drops_health_lines():
    health_filter = webapi.HealthCheckFilter()
    health = logging.LogRecord("uvicorn.access", logging.INFO, "", 0, '%s "GET /health HTTP/1.1" 200', ("1.2.3.4",), None)
    convert = logging.LogRecord("uvicorn.access", logging.INFO, "", 0, '%s "POST /convert HTTP/1.1" 200', ("1.2.3.4",), None)

    assert health_filter.filter(health) is False
    assert health_filter.filter(convert) is True


def test_run_exits_when_store_identity_missing(monkeypatch):
    monkeypatch.delenv("AWS_REGION", raising=False)
    monkeypatch.delenv("S3_BUCKET", raising=False)
    monkeypatch.setattr(webapi, "load_dotenv", lambda: False)

    with pytest.raises(SystemExit) as excinfo:
        webapi.run()

    assert excinfo.value.code == 1
