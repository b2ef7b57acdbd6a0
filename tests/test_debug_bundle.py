from __future__ import annotations

import zipfile
from pathlib import Path

from moneyforward_sync.util.debug_bundle import create_debug_bundle


def test_create_debug_bundle_includes_trace_debug_and_log(tmp_path: Path) -> None:
    debug_dir = tmp_path / "debug"
    debug_dir.mkdir()
    (debug_dir / "step_01_sign_in_page.png").write_bytes(b"png")
    (debug_dir / "login_failure.html").write_text("<html/>", encoding="utf-8")

    trace = tmp_path / "traces" / "trace.zip"
    trace.parent.mkdir()
    trace.write_bytes(b"PK")

    log_file = tmp_path / "app.log"
    log_file.write_text("hello", encoding="utf-8")

    out = create_debug_bundle(
        debug_dir=str(debug_dir),
        log_file=str(log_file),
        trace_path=str(trace),
        out_dir=str(tmp_path),
        label="portfolio",
    )
    assert out.exists()
    assert out.name.startswith("debug_bundle_portfolio_")

    with zipfile.ZipFile(out, "r") as z:
        names = set(z.namelist())
        assert "app.log" in names
        assert "trace/trace.zip" in names
        assert "debug/step_01_sign_in_page.png" in names
        assert "debug/login_failure.html" in names


def test_create_debug_bundle_tolerates_missing_inputs(tmp_path: Path) -> None:
    out = create_debug_bundle(
        debug_dir=str(tmp_path / "missing"),
        trace_path=str(tmp_path / "missing.zip"),
        out_dir=str(tmp_path),
    )
    with zipfile.ZipFile(out, "r") as z:
        assert z.namelist() == []
