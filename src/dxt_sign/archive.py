"""Extract the ZIP archive inside a (possibly signed) extension."""

from __future__ import annotations

import io
import logging
import shutil
import zipfile
from pathlib import Path

from dxt_sign import block
from dxt_sign.exceptions import ArchiveError

logger = logging.getLogger(__name__)


def unpack(file_bytes: bytes, output_dir: str) -> list[str]:
    """Extract the extension in *file_bytes* into *output_dir*.

    Any signature block is ignored; the archive is not verified.  Entries are
    checked before anything is written, so an archive with a path escaping
    *output_dir* extracts nothing.

    Returns:
        The archive names of the extracted files, in archive order.

    Raises:
        ArchiveError: if the content is not a ZIP archive or contains an
            entry that would land outside *output_dir*.
    """
    archive_bytes = block.strip(file_bytes)
    root = Path(output_dir).resolve()

    try:
        zf = zipfile.ZipFile(io.BytesIO(archive_bytes))
    except zipfile.BadZipFile as exc:
        raise ArchiveError(f"Not a valid extension archive: {exc}") from exc

    with zf:
        members = zf.infolist()
        for info in members:
            target = (root / info.filename).resolve()
            if not target.is_relative_to(root):
                raise ArchiveError(
                    f"Refusing to extract '{info.filename}' outside {root}"
                )

        root.mkdir(parents=True, exist_ok=True)
        extracted: list[str] = []
        for info in members:
            target = (root / info.filename).resolve()
            if info.is_dir():
                target.mkdir(parents=True, exist_ok=True)
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            with zf.open(info) as src, target.open("wb") as dst:
                shutil.copyfileobj(src, dst)
            extracted.append(info.filename)

    logger.info("Extracted %d files to %s", len(extracted), root)
    return extracted


__all__ = ["unpack"]
