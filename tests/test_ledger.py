from datetime import datetime, timezone
from pathlib import Path

import pytest

from pkgsearch.exceptions import ConfigError
from pkgsearch.storage.database import normalize_url
from pkgsearch.storage.ledger import GenerationLedger


def make_ledger(tmp_path: Path) -> GenerationLedger:
    return GenerationLedger.from_url(f"sqlite:///{tmp_path / 'ledger.db'}")


def test_record_lifecycle(tmp_path: Path) -> None:
    ledger = make_ledger(tmp_path)
    created = datetime(2024, 1, 1, tzinfo=timezone.utc)
    ledger.record_created("nusearch-1", created)
    ledger.record_loaded("nusearch-1", 1200)
    ledger.record_promoted("nusearch-1")

    record = ledger.get("nusearch-1")
    assert record is not None
    assert record.status == "live"
    assert record.document_count == 1200
    assert record.promoted_at is not None
    assert ledger.get("nusearch-404") is None


def test_promotion_updates_demoted_and_deleted(tmp_path: Path) -> None:
    ledger = make_ledger(tmp_path)
    for name in ("nusearch-1", "nusearch-2", "nusearch-3"):
        ledger.record_created(name)
    ledger.record_promoted("nusearch-3", demoted=["nusearch-2"], deleted=["nusearch-1"])

    statuses = {r.name: r.status for r in ledger.list_generations()}
    assert statuses == {"nusearch-3": "live", "nusearch-2": "previous", "nusearch-1": "deleted"}
    assert ledger.get("nusearch-1").deleted_at is not None  # type: ignore[union-attr]


def test_list_is_newest_first_and_limited(tmp_path: Path) -> None:
    ledger = make_ledger(tmp_path)
    for i in range(5):
        ledger.record_created(f"nusearch-{i}")
    ledger.record_failed("nusearch-4", "x" * 5000)

    records = ledger.list_generations(limit=3)
    assert [r.name for r in records] == ["nusearch-4", "nusearch-3", "nusearch-2"]
    assert records[0].status == "failed"
    assert len(records[0].error or "") == 4000


def test_ledger_survives_reopening(tmp_path: Path) -> None:
    make_ledger(tmp_path).record_created("nusearch-1")
    assert make_ledger(tmp_path).get("nusearch-1") is not None


def test_database_urls() -> None:
    assert normalize_url("postgresql://u:p@db/ledger") == "postgresql+psycopg://u:p@db/ledger"
    assert normalize_url("sqlite:///ledger.db") == "sqlite:///ledger.db"
    with pytest.raises(ConfigError):
        normalize_url("mysql://localhost/db")
    with pytest.raises(ConfigError):
        GenerationLedger.from_url("mysql://localhost/db")
