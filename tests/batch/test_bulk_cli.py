"""Tests for the itad-bulk command line entry point."""

import csv

import pytest

from itad_batch.cli import main
from itad_kernel.db.engine import reset_engine, session_scope
from itad_kernel.domain.lifecycle import AssetStatus
from itad_kernel.services.asset_store import AssetStore


@pytest.fixture
def db_url(tmp_path):
    yield f"sqlite:///{tmp_path / 'itad.db'}"
    reset_engine()


def _write_csv(path, header, rows):
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(header)
        writer.writerows(rows)
    return path


@pytest.fixture
def asset_sheet(tmp_path):
    return _write_csv(
        tmp_path / "assets.csv",
        ("Serial Number", "Model", "Customer", "Location"),
        [
            ("CLI-001", "Dell OptiPlex 7090", "Acme Corp", "Building A"),
            ("CLI-002", "HP EliteBook 840", "", ""),
        ],
    )


class TestTemplate:

    def test_prints_template_without_file(self, db_url, capsys):
        assert main(["transfers", "--template", "--db-url", db_url]) == 0

        out = capsys.readouterr().out
        assert out.splitlines()[0] == "Asset ID,New Owner"

    def test_unknown_kind(self, db_url, capsys):
        assert main(["repaint", "--template", "--db-url", db_url]) == 1
        assert "repaint" in capsys.readouterr().err


class TestRun:

    def test_register_sheet(self, db_url, asset_sheet, capsys):
        code = main(["register", "--file", str(asset_sheet), "--db-url", db_url])

        assert code == 0
        out = capsys.readouterr().out
        assert "register COMPLETED" in out
        assert "Total: 2, Successful: 2, Failed: 0" in out

        with session_scope() as session:
            assets = AssetStore(session).list_assets()
            assert {a.serial_number for a in assets} == {"CLI-001", "CLI-002"}
            assert all(a.status == AssetStatus.REGISTERED for a in assets)

    def test_validate_only_writes_nothing(self, db_url, asset_sheet, capsys):
        code = main([
            "register", "--file", str(asset_sheet), "--db-url", db_url, "--validate-only",
        ])

        assert code == 0
        assert "register VALIDATED" in capsys.readouterr().out
        with session_scope() as session:
            assert AssetStore(session).list_assets() == []

    def test_failed_rows_give_nonzero_exit(self, db_url, tmp_path, capsys):
        sheet = _write_csv(
            tmp_path / "recycle.csv",
            ("Asset ID",),
            [("00000000-0000-4000-8000-000000000001",)],
        )

        code = main(["recycle", "--file", str(sheet), "--db-url", db_url, "--stop-on-error"])

        assert code == 1
        out = capsys.readouterr().out
        assert "Row 1" in out
        assert "ASSET_NOT_FOUND" in out

    def test_missing_file(self, db_url, tmp_path, capsys):
        code = main(["register", "--file", str(tmp_path / "nope.csv"), "--db-url", db_url])

        assert code == 1
        assert "File not found" in capsys.readouterr().err

    def test_file_required(self, db_url, capsys):
        assert main(["register", "--db-url", db_url]) == 1
        assert "--file is required" in capsys.readouterr().err

    def test_unknown_log_level(self, db_url, asset_sheet, capsys):
        code = main([
            "register", "--file", str(asset_sheet), "--db-url", db_url, "--log-level", "chatty",
        ])

        assert code == 1
        assert "Unknown log level" in capsys.readouterr().err
