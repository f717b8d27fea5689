from __future__ import annotations

import logging
import posixpath
import shutil
import zipfile
from pathlib import Path

from ..errors import ConfigurationFailure

logger = logging.getLogger(__name__)


VSIX_CONTENT_PREFIX = "Contents/"


def _normalize(name: str) -> str:
    path = posixpath.normpath(name.replace("\\", "/"))
    # normpath drops the trailing slash that marks directory entries
    if name.endswith(("/", "\\")):
        path += "/"
    return path


def extract_vsix(
    archive_path: str | Path,
    install_root: str | Path,
    *,
    prefix: str = VSIX_CONTENT_PREFIX,
    dry_run: bool = False,
) -> list[Path]:
    """Extract every entry under ``prefix`` into ``install_root``.

    The prefix is stripped; the rest of the entry path is kept. Returns the
    paths written (directories included).
    """

    root = Path(install_root)
    logger.info("Extracting VSIX file: %s", archive_path)
    written: list[Path] = []

    try:
        zf = zipfile.ZipFile(archive_path)
    except zipfile.BadZipFile as e:
        raise ConfigurationFailure(f"Not a VSIX archive: {archive_path}: {e}") from e

    with zf:
        for info in zf.infolist():
            path = _normalize(info.filename)
            if not path.startswith(prefix):
                continue
            rel = path[len(prefix):].rstrip("/")
            if not rel:
                continue
            if rel.startswith("../") or rel == ".." or posixpath.isabs(rel):
                raise ConfigurationFailure(f"VSIX entry escapes install root: {info.filename}")
            out = root.joinpath(*rel.split("/"))

            if dry_run:
                logger.info("Would extract %s -> %s", info.filename, str(out))
                written.append(out)
                continue

            if info.is_dir():
                out.mkdir(parents=True, exist_ok=True)
            else:
                out.parent.mkdir(parents=True, exist_ok=True)
                with zf.open(info) as src, out.open("wb") as dst:
                    shutil.copyfileobj(src, dst)
            written.append(out)

    logger.info("Extracted %d entries to %s", len(written), str(root))
    return written
