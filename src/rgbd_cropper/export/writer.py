"""Write export bundles to disk as a ZIP archive or a folder tree."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from .bundle import ExportBundle

LOG = logging.getLogger(__name__)


def ensure_dir(p: Path) -> None:
    """Create `p` if it doesn't exist."""
    p.mkdir(parents=True, exist_ok=True)


def write_zip(bundle: ExportBundle, out_dir: Path) -> Path:
    """Write `<out_dir>/<folder_name>.zip` and return its path.

    Raises:
        FileExistsError: If the archive already exists.
    """
    ensure_dir(out_dir)
    target = out_dir / f"{bundle.folder_name}.zip"
    if target.exists():
        raise FileExistsError(f"{target} already exists; aborting to avoid overwrite.")
    target.write_bytes(bundle.to_zip())
    LOG.info("Wrote %s", target)
    return target


def write_directory(bundle: ExportBundle, out_dir: Path) -> Path:
    """Write the bundle under `<out_dir>/<folder_name>/` and return that folder.

    Files are first written to a hidden staging folder which is renamed into
    place once complete. A failed write removes the staging folder again, so
    neither a half bundle nor a stale staging folder is left behind.

    Raises:
        FileExistsError: If the destination folder already exists.
    """
    ensure_dir(out_dir)
    target = out_dir / bundle.folder_name
    if target.exists():
        raise FileExistsError(f"{target} already exists; aborting to avoid overwrite.")

    staging = out_dir / f".{bundle.folder_name}.partial"
    if staging.exists():
        raise FileExistsError(f"Leftover staging folder {staging}; remove it first.")
    try:
        for rel, data in bundle.files().items():
            path = staging / rel
            ensure_dir(path.parent)
            path.write_bytes(data)
        staging.rename(target)
    except BaseException:
        shutil.rmtree(staging, ignore_errors=True)
        raise
    LOG.info("Wrote %d files under %s", len(bundle.files()), target)
    return target
