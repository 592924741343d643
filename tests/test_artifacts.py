from __future__ import annotations

import json
from pathlib import Path

import pytest

from perf_tools.journey.artifacts import ArtifactStore, step_prefix
from perf_tools.journey.http_client import InfrastructureFailure


def test_step_prefix_is_ordered_and_filesystem_safe() -> None:
    assert step_prefix(1, "home") == "01_home"
    assert step_prefix(12, "add to/cart") == "12_add_to_cart"
    assert step_prefix(3, "") == "03_step"


def test_step_files_round_trip(tmp_path: Path) -> None:
    store = ArtifactStore(tmp_path / "run")

    trace = store.put_trace("01_home", b'{"traceEvents": []}')
    metrics = store.put_metrics("01_home", {"stepName": "home"})
    png = store.put_png("01_home", b"\x89PNG\r\n")

    assert Path(trace.path).name == "01_home.trace.json"
    assert trace.kind == "trace" and trace.bytes == 19
    assert json.loads(Path(metrics.path).read_text(encoding="utf-8")) == {"stepName": "home"}
    assert png.mime_type == "image/png"
    assert store.list() == ["01_home.final.png", "01_home.metrics.json", "01_home.trace.json"]
    assert store.path_for("report.json") == tmp_path / "run" / "report.json"


def test_artifacts_are_write_once(tmp_path: Path) -> None:
    store = ArtifactStore(tmp_path)
    store.put_json("report.json", {"steps": []}, kind="report")

    with pytest.raises(FileExistsError):
        store.put_json("report.json", {"steps": [1]}, kind="report")
    assert json.loads((tmp_path / "report.json").read_text(encoding="utf-8")) == {"steps": []}


def test_invalid_names_are_rejected(tmp_path: Path) -> None:
    store = ArtifactStore(tmp_path)
    for name in ("../escape.json", "", ".hidden", "a/b.json"):
        with pytest.raises(ValueError):
            store.put_bytes(name, b"x", kind="raw")


def test_unusable_output_dir_is_infrastructure_failure(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("file", encoding="utf-8")

    with pytest.raises(InfrastructureFailure) as exc:
        ArtifactStore(blocker / "run")
    assert exc.value.action == "create_output_dir"


def test_write_failure_is_infrastructure_failure(tmp_path: Path) -> None:
    store = ArtifactStore(tmp_path / "run")
    (tmp_path / "run").rmdir()
    (tmp_path / "run").write_text("gone", encoding="utf-8")

    with pytest.raises(InfrastructureFailure) as exc:
        store.put_json("summary.json", {}, kind="summary")
    assert exc.value.action == "write_artifact"
