# bookcache/utils/storage.py
"""
Whole-document JSON persistence.

Writes go to a temp file in the target directory, are fsynced, then
renamed over the live path, so a reader sees either the old document or the
new one and never a partial write.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


def atomic_write_text(path: Path, text: str) -> None:
    """
    Replace ``path`` with ``text`` atomically.

    Raises:
        OSError: if the temp write or the rename fails; the live file is
            left untouched and the temp file removed
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def read_json_document(path: Path) -> Optional[Any]:
    """
    Load a JSON document.

    Returns:
        The parsed document, or None when the file is missing or unreadable
    """
    path = Path(path)
    if not path.exists():
        logger.info(f"No document at {path}, starting empty")
        return None

    try:
        with open(path, "r", encoding="utf-8") as handle:
            return json.load(handle)
    except (OSError, ValueError) as e:
        logger.error(f"Could not read {path}, starting empty: {e}")
        return None
