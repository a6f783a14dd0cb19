from __future__ import annotations

import zipfile
from pathlib import Path

from nhs_records_export.util.debug_bundle import create_debug_bundle


def test_create_debug_bundle_includes_debug_and_log(tmp_path: Path) -> None:
    debug_dir = tmp_path / "debug"
    (debug_dir / "steps").mkdir(parents=True)
    (debug_dir / "steps" / "step_01_login.png").write_bytes(b"png")
    (debug_dir / "run_failed.html").write_text("<html/>", encoding="utf-8")

    log_file = tmp_path / "nhs_export.log"
    log_file.write_text("hello", encoding="utf-8")

    out = create_debug_bundle(
        debug_dir=str(debug_dir),
        log_file=str(log_file),
        out_dir=str(tmp_path),
        label="Download",
    )
    assert out.exists()
    assert out.suffix == ".zip"
    assert out.name.startswith("debug_bundle_download_")

    with zipfile.ZipFile(out, "r") as z:
        names = set(z.namelist())
        assert "nhs_export.log" in names
        assert "debug/steps/step_01_login.png" in names
        assert "debug/run_failed.html" in names


def test_create_debug_bundle_without_artifacts(tmp_path: Path) -> None:
    out = create_debug_bundle(
        debug_dir=str(tmp_path / "missing"),
        log_file=str(tmp_path / "missing.log"),
        out_dir=str(tmp_path / "bundles"),
    )
    assert out.parent == tmp_path / "bundles"
    with zipfile.ZipFile(out, "r") as z:
        assert z.namelist() == []
