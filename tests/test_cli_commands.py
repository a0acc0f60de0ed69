from __future__ import annotations

import io
import json
from pathlib import Path

import pytest
from openpyxl import Workbook, load_workbook
from typer.testing import CliRunner

from templateflow.cli import app
from templateflow.services.storage import LocalObjectStore
from templateflow.services.upload.planner import MIB

runner = CliRunner()


def _template_bytes(headers: list[str] | None = None) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Template"
    for idx, header in enumerate(headers or ["item_sku", "color_name", "size_name"], start=1):
        ws.cell(row=3, column=idx, value=header)
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def _dataset(tmp_path: Path) -> Path:
    path = tmp_path / "rows.csv"
    path.write_text("parent_sku,item_sku,color_name,size_name\nA,a1,Red,S\nA,a2,Blue,M\n", encoding="utf-8")
    return path


def _last_line(output: str) -> str:
    return output.strip().splitlines()[-1]


@pytest.fixture()
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    store = LocalObjectStore(tmp_path / "store")
    store.put("templates/UK/listing/listing.xlsx", _template_bytes())
    monkeypatch.setenv("TEMPLATEFLOW_STORE_ROOT", str(tmp_path / "store"))
    monkeypatch.setenv("TEMPLATEFLOW_CACHE_DIR", str(tmp_path / "cache"))
    return tmp_path


def test_plan_prints_json() -> None:
    result = runner.invoke(app, ["plan", str(50 * MIB)])

    assert result.exit_code == 0, result.output
    assert json.loads(_last_line(result.stdout)) == {"part_size": MIB, "parallelism": 4, "use_chunking": True}


def test_plan_rejects_unknown_hint() -> None:
    result = runner.invoke(app, ["plan", "1024", "--hint", "medium"])

    assert result.exit_code != 0


def test_fill_writes_local_output(tmp_path: Path) -> None:
    template = tmp_path / "template.xlsx"
    template.write_bytes(_template_bytes())
    out = tmp_path / "out" / "filled.xlsx"

    result = runner.invoke(
        app, ["fill", str(template), str(_dataset(tmp_path)), "--out", str(out), "--key-prefix", "UK"]
    )

    assert result.exit_code == 0, result.output
    ws = load_workbook(out)["Template"]
    assert [ws.cell(row=r, column=1).value for r in range(4, 7)] == ["UKA", "a1", "a2"]


def test_fill_reports_structure_errors(tmp_path: Path) -> None:
    template = tmp_path / "template.xlsx"
    template.write_bytes(_template_bytes(["item_sku"]))

    result = runner.invoke(
        app, ["fill", str(template), str(_dataset(tmp_path)), "--out", str(tmp_path / "out.xlsx")]
    )

    assert result.exit_code == 1
    assert not (tmp_path / "out.xlsx").exists()


def test_fill_missing_mapping_file_is_config_error(tmp_path: Path) -> None:
    template = tmp_path / "template.xlsx"
    template.write_bytes(_template_bytes())

    result = runner.invoke(
        app,
        [
            "fill",
            str(template),
            str(_dataset(tmp_path)),
            "--out",
            str(tmp_path / "out.xlsx"),
            "--mapping",
            str(tmp_path / "absent.yaml"),
        ],
    )

    assert result.exit_code == 2


def test_generate_and_publish(workspace: Path) -> None:
    result = runner.invoke(
        app,
        [
            "generate",
            "UK",
            "listing",
            str(_dataset(workspace)),
            "--out-dir",
            str(workspace / "out"),
            "--publish",
        ],
    )

    assert result.exit_code == 0, result.output
    generated = workspace / "out" / "UK_A.xlsx"
    assert generated.exists()
    published = [line for line in result.stdout.splitlines() if line.startswith("documents/UK/listing/")]
    assert len(published) == 1
    assert LocalObjectStore(workspace / "store").get(published[0]) == generated.read_bytes()


def test_generate_unknown_template_fails(workspace: Path) -> None:
    result = runner.invoke(app, ["generate", "DE", "listing", str(_dataset(workspace))])

    assert result.exit_code == 1


def test_cache_commands(workspace: Path) -> None:
    first = runner.invoke(app, ["cache", "get", "UK", "listing", "--out", str(workspace / "copy.xlsx")])
    second = runner.invoke(app, ["cache", "get", "UK", "listing"])

    assert first.exit_code == 0, first.output
    assert _last_line(first.stdout).endswith("(store)")
    assert _last_line(second.stdout).endswith("(cache)")
    stored = LocalObjectStore(workspace / "store").get("templates/UK/listing/listing.xlsx")
    assert (workspace / "copy.xlsx").read_bytes() == stored

    stats = json.loads(_last_line(runner.invoke(app, ["cache", "stats"]).stdout))
    assert stats["entries"] == 1
    assert stats["totalFiles"] == 2

    assert _last_line(runner.invoke(app, ["cache", "purge"]).stdout) == "purged 0 entries"
    assert _last_line(runner.invoke(app, ["cache", "clear", "--category", "UK"]).stdout) == "removed 2 file(s)"


def test_cache_without_store_is_config_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TEMPLATEFLOW_CACHE_DIR", str(tmp_path / "cache"))

    result = runner.invoke(app, ["cache", "stats"])

    assert result.exit_code == 2
