from __future__ import annotations

import json
from dataclasses import replace

import pytest

from codeindex.app import metrics
from codeindex.app.dependencies import reset_dependency_caches
from codeindex.app.main import main

TAX_SOURCE = """import Foundation

// calculate tax total for the cart
func calculateTaxTotal(amount: Double) -> Double {
    return amount * 0.2
}
"""


@pytest.fixture(autouse=True)
def fresh_dependencies():
    reset_dependency_caches()
    yield
    reset_dependency_caches()


def test_count_prints_token_estimate(tmp_path, capsys) -> None:
    path = tmp_path / "Tax.swift"
    path.write_text(TAX_SOURCE, encoding="utf-8")

    assert main(["count", str(path)]) == 0

    assert int(capsys.readouterr().out.strip()) > 0


def test_index_prints_report(tmp_path, capsys) -> None:
    (tmp_path / "Tax.swift").write_text(TAX_SOURCE, encoding="utf-8")

    assert main(["index", str(tmp_path), "--codebase-id", "shop"]) == 0

    payload = json.loads(capsys.readouterr().out)
    assert payload["codebase_id"] == "shop"
    assert payload["indexed_files"] == 1
    assert payload["failed_files"] == 0
    assert payload["languages"] == ["swift"]
    assert payload["frameworks"] == ["Foundation"]
    assert len(payload["root_hash"]) == 64


def test_search_returns_expanded_context(tmp_path, capsys) -> None:
    (tmp_path / "Tax.swift").write_text(TAX_SOURCE, encoding="utf-8")

    assert main(["search", str(tmp_path), "calculate tax total", "--threshold", "0.1"]) == 0

    results = json.loads(capsys.readouterr().out)
    assert results
    assert results[0]["file_path"] == "Tax.swift"
    assert "calculateTaxTotal" in results[0]["context"]


def test_missing_root_is_rejected(tmp_path) -> None:
    assert main(["index", str(tmp_path / "missing")]) == 2


def test_index_writes_prometheus_metrics_file(tmp_path, monkeypatch, capsys) -> None:
    monkeypatch.setattr(metrics, "settings", replace(metrics.settings, metrics_enabled=True))
    source_dir = tmp_path / "shop"
    source_dir.mkdir()
    (source_dir / "Tax.swift").write_text(TAX_SOURCE, encoding="utf-8")
    metrics_file = tmp_path / "codeindex.prom"

    assert main(["index", str(source_dir), "--metrics-file", str(metrics_file)]) == 0

    capsys.readouterr()
    body = metrics_file.read_text(encoding="utf-8")
    assert 'codeindex_indexed_files_total{status="indexed"}' in body
    assert "codeindex_indexed_chunks_total" in body
