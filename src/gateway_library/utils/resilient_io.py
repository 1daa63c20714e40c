# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/gateway_library/utils/resilient_io.py

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional, Union


def safe_mkdir(path: Union[str, Path], logger: logging.Logger) -> bool:
    try:
        Path(path).mkdir(parents=True, exist_ok=True)
        return True
    except OSError as e:
        logger.error(f"Failed to create directory '{path}': {e}")
        return False


def safe_write_json(
    path: Union[str, Path],
    data: Any,
    logger: logging.Logger,
    secure_permissions: bool = False,
) -> bool:
    """
    Atomically write JSON: write to a temp file in the same directory, then
    os.replace() it over the target. Returns False on any OS error.
    """
    target = Path(path)
    if not safe_mkdir(target.parent, logger):
        return False

    tmp_path: Optional[str] = None
    try:
        fd, tmp_path = tempfile.mkstemp(
            dir=str(target.parent), prefix=f".{target.name}.", suffix=".tmp"
        )
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        if secure_permissions:
            os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, target)
        tmp_path = None
        return True
    except (OSError, TypeError, ValueError) as e:
        logger.error(f"Failed to write '{target.name}': {e}")
        return False
    finally:
        if tmp_path and os.path.exists(tmp_path):
            try:
                os.unlink(tmp_path)
            except OSError:
                pass


def safe_read_json(path: Union[str, Path], logger: logging.Logger) -> Optional[Any]:
    """
    Read a JSON file. A missing file yields None; a corrupt or unreadable
    file raises so callers can tell "empty" apart from "broken".
    """
    target = Path(path)
    if not target.exists():
        return None
    with open(target, "r", encoding="utf-8") as f:
        content = f.read()
    if not content.strip():
        logger.warning(f"'{target.name}' is empty")
        return None
    return json.loads(content)
