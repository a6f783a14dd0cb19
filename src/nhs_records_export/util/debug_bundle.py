from __future__ import annotations

import time
import zipfile
from pathlib import Path


def create_debug_bundle(
    *,
    debug_dir: str,
    log_file: str,
    out_dir: str = "data",
    label: str = "",
) -> Path:
    """
    Create a shareable zip containing debug artifacts + logs.

    Never includes `.env`, config files, downloaded documents or the download history:
    those hold credentials or medical records.
    """
    out_root = Path(out_dir)
    out_root.mkdir(parents=True, exist_ok=True)

    stamp = time.strftime("%Y%m%d_%H%M%S")
    lbl = (label or "").strip().lower()
    lbl_part = f"_{lbl}" if lbl else ""
    out_path = out_root / f"debug_bundle{lbl_part}_{stamp}.zip"

    dbg = Path(debug_dir)
    log = Path(log_file)

    def _add_file(z: zipfile.ZipFile, file_path: Path, arcname: str) -> None:
        try:
            if file_path.exists() and file_path.is_file():
                z.write(file_path, arcname=arcname)
        except OSError:
            # a screenshot can disappear between listing and zipping
            return

    with zipfile.ZipFile(out_path, "w", compression=zipfile.ZIP_DEFLATED) as z:
        _add_file(z, log, arcname=log.name)

        if dbg.exists() and dbg.is_dir():
            for p in sorted(dbg.rglob("*")):
                if not p.is_file():
                    continue
                rel = p.relative_to(dbg)
                _add_file(z, p, arcname=str(Path("debug") / rel))

    return out_path
