"""
Tests for the command-line interface.
"""

import pytest
from typer.testing import CliRunner

from invoice_ingest import cli
from invoice_ingest.errors import ExtractionFailed
from invoice_ingest.pipeline import IngestionPipeline
from invoice_ingest.schemas import InvoiceStatus
from invoice_ingest.store import JsonRecordStore

from conftest import TEST_CREDENTIAL, FakeExtractionClient, SleepRecorder, make_record

runner = CliRunner()


@pytest.fixture
def store_path(tmp_path):
    return tmp_path / "invoices.json"


@pytest.fixture
def seeded_store(store_path):
    store = JsonRecordStore(store_path)
    store.save(make_record(id="VALID001", vendor_name="Migros", upload_timestamp=1_000))
    store.save(make_record(
        id="REVIEW01",
        vendor_name="Sok",
        subtotal=100.0,
        tax_amount=20.0,
        grand_total=125.0,
        status=InvoiceStatus.REVIEW_REQUIRED,
        validation_message="Math mismatch: Subtotal (100) + Tax (20) != Total (125). Diff: 5.00",
        upload_timestamp=2_000,
    ))
    return store


@pytest.fixture
def fake_client(monkeypatch):
    client = FakeExtractionClient()

    def create_pipeline(store, credential):
        return IngestionPipeline(client, store, credential, sleep=SleepRecorder())

    monkeypatch.setattr(cli, "create_pipeline", create_pipeline)
    return client


@pytest.fixture
def no_env_credential(monkeypatch):
    monkeypatch.delenv("INVOICE_INGEST_API_KEY", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)


class TestIngestCommand:

    def test_ingest_directory(self, tmp_path, store_path, fake_client):
        inbox = tmp_path / "inbox"
        inbox.mkdir()
        (inbox / "a.png").write_bytes(b"png")
        (inbox / "b.pdf").write_bytes(b"%PDF")
        (inbox / "notes.txt").write_text("not an invoice")

        result = runner.invoke(cli.app, [
            "ingest", str(inbox), "--store", str(store_path), "--api-key", TEST_CREDENTIAL,
        ])

        assert result.exit_code == 0, result.output
        assert "2/2 invoices ingested" in result.output
        assert "Skipping unsupported file: notes.txt" in result.output
        assert sorted(f for f, _ in fake_client.calls) == ["a.png", "b.pdf"]
        assert len(JsonRecordStore(store_path).list()) == 2

    def test_ingest_reports_failures(self, tmp_path, store_path, fake_client):
        fake_client.script["bad.png"] = ExtractionFailed("garbled")
        good = tmp_path / "good.png"
        bad = tmp_path / "bad.png"
        good.write_bytes(b"png")
        bad.write_bytes(b"png")

        result = runner.invoke(cli.app, [
            "ingest", str(good), str(bad), "--store", str(store_path), "--api-key", TEST_CREDENTIAL,
        ])

        assert result.exit_code == 0, result.output
        assert "1/2 invoices ingested" in result.output
        assert "ExtractionFailed: garbled" in result.output

    def test_ingest_all_failed_exits_nonzero(self, tmp_path, store_path, fake_client):
        fake_client.script["bad.png"] = ExtractionFailed("garbled")
        bad = tmp_path / "bad.png"
        bad.write_bytes(b"png")

        result = runner.invoke(cli.app, [
            "ingest", str(bad), "--store", str(store_path), "--api-key", TEST_CREDENTIAL,
        ])

        assert result.exit_code == 1

    def test_ingest_without_credential(self, tmp_path, store_path, fake_client, no_env_credential):
        doc = tmp_path / "a.png"
        doc.write_bytes(b"png")

        result = runner.invoke(cli.app, ["ingest", str(doc), "--store", str(store_path)])

        assert result.exit_code == 1
        assert "no API key" in result.output
        assert fake_client.calls == []

    def test_ingest_credential_from_environment(self, tmp_path, store_path, fake_client, monkeypatch):
        monkeypatch.setenv("INVOICE_INGEST_API_KEY", "sk-from-environment")
        doc = tmp_path / "a.png"
        doc.write_bytes(b"png")

        result = runner.invoke(cli.app, ["ingest", str(doc), "--store", str(store_path)])

        assert result.exit_code == 0, result.output
        assert fake_client.calls == [("a.png", "sk-from-environment")]

    def test_ingest_nothing_supported(self, tmp_path, store_path, fake_client):
        doc = tmp_path / "notes.txt"
        doc.write_text("hello")

        result = runner.invoke(cli.app, [
            "ingest", str(doc), "--store", str(store_path), "--api-key", TEST_CREDENTIAL,
        ])

        assert result.exit_code == 1
        assert "No images or PDFs" in result.output


class TestReviewCommands:

    def test_list_newest_first(self, store_path, seeded_store):
        result = runner.invoke(cli.app, ["list", "--store", str(store_path)])

        assert result.exit_code == 0
        assert result.output.index("REVIEW01") < result.output.index("VALID001")
        assert "2 invoice(s)" in result.output

    def test_list_review_only(self, store_path, seeded_store):
        result = runner.invoke(cli.app, ["list", "--store", str(store_path), "--review-only"])

        assert "REVIEW01" in result.output
        assert "VALID001" not in result.output

    def test_list_empty(self, store_path):
        result = runner.invoke(cli.app, ["list", "--store", str(store_path)])
        assert "No invoices stored." in result.output

    def test_show(self, store_path, seeded_store):
        result = runner.invoke(cli.app, ["show", "VALID001", "--store", str(store_path)])

        assert result.exit_code == 0
        assert '"vendor_name": "Migros"' in result.output

    def test_show_unknown(self, store_path, seeded_store):
        result = runner.invoke(cli.app, ["show", "NOPE0000", "--store", str(store_path)])
        assert result.exit_code == 1

    def test_edit_fixes_review(self, store_path, seeded_store):
        result = runner.invoke(cli.app, ["edit", "REVIEW01", "--store", str(store_path), "--total", "120"])

        assert result.exit_code == 0, result.output
        assert "Updated REVIEW01: VALID" in result.output
        assert seeded_store.get("REVIEW01").status == InvoiceStatus.VALID

    def test_edit_recalculate(self, store_path, seeded_store):
        result = runner.invoke(cli.app, [
            "edit", "REVIEW01", "--store", str(store_path), "--tax-rate", "10", "--recalculate",
        ])

        assert result.exit_code == 0, result.output
        record = seeded_store.get("REVIEW01")
        assert record.tax_amount == 10.0
        assert record.grand_total == 110.0

    def test_edit_requires_changes(self, store_path, seeded_store):
        result = runner.invoke(cli.app, ["edit", "REVIEW01", "--store", str(store_path)])
        assert result.exit_code == 1

    def test_delete(self, store_path, seeded_store):
        result = runner.invoke(cli.app, ["delete", "VALID001", "--store", str(store_path), "--yes"])

        assert result.exit_code == 0
        assert seeded_store.get("VALID001") is None

    def test_delete_unknown(self, store_path, seeded_store):
        result = runner.invoke(cli.app, ["delete", "NOPE0000", "--store", str(store_path), "-y"])
        assert result.exit_code == 1


class TestReportCommands:

    def test_export(self, tmp_path, store_path, seeded_store):
        out_dir = tmp_path / "exports"

        result = runner.invoke(cli.app, ["export", "--store", str(store_path), "-o", str(out_dir)])

        assert result.exit_code == 0, result.output
        files = list(out_dir.glob("invoices_export_*.csv"))
        assert len(files) == 1
        assert files[0].read_text(encoding="utf-8").startswith("ID,Vendor,Date")

    def test_stats(self, store_path, seeded_store):
        result = runner.invoke(cli.app, ["stats", "--store", str(store_path)])

        assert result.exit_code == 0
        assert "INVOICE DASHBOARD" in result.output
        assert "Awaiting review:" in result.output

    def test_check_key_too_short(self):
        result = runner.invoke(cli.app, ["check-key", "--api-key", "short"])

        assert result.exit_code == 1
        assert "TOO_SHORT" in result.output

    def test_version(self):
        result = runner.invoke(cli.app, ["version"])
        assert "v0.1.0" in result.output
