"""Tests for CLI commands — sample mailbox and a temporary database, CliRunner throughout."""

import json
from pathlib import Path

import pytest
from click.testing import CliRunner, Result

from billdrop.cli.main import cli
from billdrop.storage.db import SubscriptionDatabase


# ── Helpers ─────────────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def offline_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """No API key and no Gmail account, whatever the developer's .env says."""
    for name in ("ANTHROPIC_API_KEY", "USER_GOOGLE_EMAIL", "BILLDROP_PATTERNS_FILE"):
        monkeypatch.setenv(name, "")
    monkeypatch.setenv("BILLDROP_USE_SAMPLE_MAILBOX", "false")
    monkeypatch.setenv("BILLDROP_MIN_REQUEST_INTERVAL", "0")


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "billdrop.db"


def _invoke(db_path: Path, *args: str) -> Result:
    return CliRunner().invoke(cli, ["--db", str(db_path), *args])


def _stored(db_path: Path) -> list[str]:
    db = SubscriptionDatabase(db_path)
    try:
        return [s.service_name for s in db.list_subscriptions("local")]
    finally:
        db.close()


# ── billdrop scan ──────────────────────────────────────────────────────────────


class TestScan:
    def test_sample_scan_stores_pending(self, db_path: Path) -> None:
        result = _invoke(db_path, "scan", "--sample")
        assert result.exit_code == 0, result.output
        assert "Netflix" in result.output
        assert "new 5" in result.output
        assert sorted(_stored(db_path)) == ["Acmewidgets", "Adobe", "Netflix", "OpenAI", "Spotify"]

    def test_scan_recorded(self, db_path: Path) -> None:
        _invoke(db_path, "scan", "--sample")
        db = SubscriptionDatabase(db_path)
        latest = db.latest_scan("local")
        db.close()
        assert latest is not None
        assert latest.total_fetched == 6
        assert latest.total_accepted == 5

    def test_second_scan_finds_duplicates(self, db_path: Path) -> None:
        _invoke(db_path, "scan", "--sample")
        result = _invoke(db_path, "scan", "--sample")
        assert result.exit_code == 0, result.output
        assert "duplicates 5" in result.output
        assert len(_stored(db_path)) == 5

    def test_dry_run_saves_nothing(self, db_path: Path) -> None:
        result = _invoke(db_path, "scan", "--sample", "--dry-run")
        assert result.exit_code == 0, result.output
        assert "Dry run" in result.output
        assert _stored(db_path) == []


# ── Review commands ────────────────────────────────────────────────────────────


class TestReview:
    def test_list_empty(self, db_path: Path) -> None:
        result = _invoke(db_path, "list")
        assert result.exit_code == 0
        assert "No subscriptions stored yet" in result.output

    def test_confirm_then_list(self, db_path: Path) -> None:
        _invoke(db_path, "scan", "--sample")
        result = _invoke(db_path, "confirm", "1")
        assert result.exit_code == 0, result.output
        assert "Confirmed subscription 1." in result.output

        listing = _invoke(db_path, "list")
        assert "confirmed" in listing.output
        assert "Confirmed monthly spend" in listing.output

        pending = _invoke(db_path, "list", "--pending")
        assert pending.output.count("pending") == 4

    def test_dismiss_hides(self, db_path: Path) -> None:
        _invoke(db_path, "scan", "--sample")
        result = _invoke(db_path, "dismiss", "2")
        assert result.exit_code == 0
        assert "Dismissed subscription 2." in result.output
        assert len(_stored(db_path)) == 4

    def test_track_off(self, db_path: Path) -> None:
        _invoke(db_path, "scan", "--sample")
        result = _invoke(db_path, "track", "1", "--off")
        assert result.exit_code == 0
        assert "Tracking off for subscription 1." in result.output

    @pytest.mark.parametrize("command", ["confirm", "dismiss", "track"])
    def test_unknown_id(self, db_path: Path, command: str) -> None:
        result = _invoke(db_path, command, "99")
        assert result.exit_code == 1
        assert "No subscription with id 99" in result.output


# ── Two-phase ──────────────────────────────────────────────────────────────────


class TestTwoPhase:
    def test_candidates_to_file(self, db_path: Path, tmp_path: Path) -> None:
        out = tmp_path / "candidates.json"
        result = _invoke(db_path, "candidates", "--sample", "--out", str(out))
        assert result.exit_code == 0, result.output
        assert "Wrote 5 candidate(s)" in result.output

        data = json.loads(out.read_text(encoding="utf-8"))
        assert {item["id"] for item in data} == {f"sample-{i}" for i in range(1, 6)}
        assert all("extracted_service_name" in item for item in data)

    def test_extract_selected(self, db_path: Path, tmp_path: Path) -> None:
        out = tmp_path / "candidates.json"
        _invoke(db_path, "candidates", "--sample", "--out", str(out))

        result = _invoke(db_path, "extract", str(out), "--id", "sample-1", "--id", "nope")
        assert result.exit_code == 0, result.output
        assert "Unknown id(s): nope" in result.output
        assert _stored(db_path) == ["Netflix"]

    def test_extract_rejects_bad_file(self, db_path: Path, tmp_path: Path) -> None:
        bad = tmp_path / "bad.json"
        bad.write_text('[{"subject": "no id"}]', encoding="utf-8")
        result = _invoke(db_path, "extract", str(bad))
        assert result.exit_code == 1
        assert "is not a candidates file" in result.output
