from __future__ import annotations

import time
import zipfile
from pathlib import Path

def create_debug_bundle(
    *,
    debug_dir: str,
    log_file: str = "",
    trace_path: str = "",
    out_dir: str = "data",
    label: str = "",
) -> Path:
    """
    Zip the playwright trace, debug screenshots/HTML and the log file into one shareable file.

    Never includes `.env` / config files (they hold credentials).
    """
    out_root = Path(out_dir)
    out_root.mkdir(parents=True, exist_ok=True)

    stamp = time.strftime("%Y%m%d_%H%M%S")
    lbl = (label or "").strip().lower()
    lbl_part = f"_{lbl}" if lbl else ""
    out_path = out_root / f"debug_bundle{lbl_part}_{stamp}.zip"

    def _add_file(z: zipfile.ZipFile, file_path: Path, arcname: str) -> None:
        try:
            if file_path.exists() and file_path.is_file():
                z.write(file_path, arcname=arcname)
        except OSError:
            # a file vanishing mid-bundle is not worth failing over
            return

    with zipfile.ZipFile(out_path, "w", compression=zipfile.ZIP_DEFLATED) as z:
        if log_file:
            log = Path(log_file)
            _add_file(z, log, arcname=log.name)

        if trace_path:
            trace = Path(trace_path)
            _add_file(z, trace, arcname=str(Path("trace") / trace.name))

        dbg = Path(debug_dir)
        if dbg.exists() and dbg.is_dir():
            for p in sorted(dbg.rglob("*")):
                if not p.is_file():
                    continue
                rel = p.relative_to(dbg)
                _add_file(z, p, arcname=str(Path("debug") / rel))

    return out_path
