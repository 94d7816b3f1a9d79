"""
Tests for the REST API.
"""

import pytest
from fastapi.testclient import TestClient

from invoice_ingest.api import app, get_extraction_client, get_pipeline, get_store
from invoice_ingest.extractor import ExtractionClient
from invoice_ingest.pipeline import IngestionPipeline
from invoice_ingest.schemas import InvoiceStatus
from invoice_ingest.store import InMemoryRecordStore

from conftest import TEST_CREDENTIAL, FakeExtractionClient, SleepRecorder, make_record


@pytest.fixture
def store():
    return InMemoryRecordStore([
        make_record(id="VALID001", vendor_name="Migros", upload_timestamp=1_000),
        make_record(
            id="REVIEW01",
            subtotal=100.0,
            tax_amount=20.0,
            grand_total=125.0,
            status=InvoiceStatus.REVIEW_REQUIRED,
            validation_message="Math mismatch: Subtotal (100) + Tax (20) != Total (125). Diff: 5.00",
            upload_timestamp=2_000,
        ),
    ])


@pytest.fixture
def fake_client():
    return FakeExtractionClient()


@pytest.fixture
def client(store, fake_client):
    pipeline = IngestionPipeline(fake_client, store, sleep=SleepRecorder())
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    app.dependency_overrides[get_extraction_client] = lambda: ExtractionClient(client_factory=lambda _: None)
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def no_env_credential(monkeypatch):
    monkeypatch.delenv("INVOICE_INGEST_API_KEY", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "version": "0.1.0"}


class TestIngestEndpoint:

    def test_ingest_uploads(self, client, store, fake_client):
        response = client.post(
            "/invoices/ingest",
            files=[
                ("files", ("a.png", b"png-bytes", "image/png")),
                ("files", ("b.pdf", b"%PDF-1.4", "application/pdf")),
                ("files", ("notes.txt", b"hello", "text/plain")),
            ],
            headers={"X-API-Key": TEST_CREDENTIAL},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["result"]["total"] == 2
        assert data["result"]["succeeded"] == 2
        assert len(data["rejected"]) == 1
        assert data["rejected"][0].startswith("notes.txt")
        assert fake_client.calls == [("a.png", TEST_CREDENTIAL), ("b.pdf", TEST_CREDENTIAL)]
        assert fake_client.contents == [b"png-bytes", b"%PDF-1.4"]
        assert len(store.list()) == 4

    def test_ingest_without_credential(self, client, fake_client, no_env_credential):
        response = client.post(
            "/invoices/ingest",
            files=[("files", ("a.png", b"png-bytes", "image/png"))],
        )

        assert response.status_code == 401
        assert fake_client.calls == []

    def test_ingest_only_unsupported(self, client):
        response = client.post(
            "/invoices/ingest",
            files=[("files", ("notes.txt", b"hello", "text/plain"))],
            headers={"X-API-Key": TEST_CREDENTIAL},
        )
        assert response.status_code == 400


class TestInvoiceEndpoints:

    def test_list_newest_first(self, client):
        response = client.get("/invoices")

        assert response.status_code == 200
        assert [r["id"] for r in response.json()] == ["REVIEW01", "VALID001"]

    def test_get(self, client):
        response = client.get("/invoices/VALID001")
        assert response.status_code == 200
        assert response.json()["vendor_name"] == "Migros"

    def test_get_unknown(self, client):
        assert client.get("/invoices/NOPE0000").status_code == 404

    def test_update_revalidates(self, client, store):
        response = client.put("/invoices/REVIEW01", json={"grand_total": 120.0})

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "VALID"
        assert data["validation_message"] is None
        assert store.get("REVIEW01").status == InvoiceStatus.VALID

    def test_update_with_recalculate(self, client):
        response = client.put("/invoices/REVIEW01?recalculate=true", json={"tax_rate": 18.0})

        data = response.json()
        assert data["tax_amount"] == 18.0
        assert data["grand_total"] == 118.0
        assert data["status"] == "VALID"

    def test_update_rejects_status(self, client):
        response = client.put("/invoices/REVIEW01", json={"status": "VALID"})
        assert response.status_code == 422

    def test_update_unknown(self, client):
        assert client.put("/invoices/NOPE0000", json={"vendor_name": "x"}).status_code == 404

    def test_delete(self, client, store):
        assert client.delete("/invoices/VALID001").status_code == 204
        assert store.get("VALID001") is None
        assert client.delete("/invoices/VALID001").status_code == 404

    def test_export(self, client):
        response = client.get("/invoices/export")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "invoices_export_" in response.headers["content-disposition"]
        lines = response.text.strip().split("\n")
        assert lines[0].startswith("ID,Vendor,Date")
        assert len(lines) == 3

    def test_stats(self, client):
        response = client.get("/stats")

        assert response.status_code == 200
        data = response.json()
        assert data["invoice_count"] == 2
        assert data["review_count"] == 1


class TestCredentialEndpoint:

    def test_short_key(self, client):
        response = client.post("/credentials/validate", json={"api_key": "short"})

        assert response.status_code == 200
        assert response.json()["reason"] == "TOO_SHORT"
        assert response.json()["valid"] is False
