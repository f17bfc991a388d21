"""
Filesystem helpers
"""

import os
import tempfile
from pathlib import Path
from typing import Optional


def atomic_write_text(
    target: Path,
    content: str,
    mode: Optional[int] = None,
    dir_mode: Optional[int] = None,
) -> Path:
    """
    Write content to target via a temp file in the same directory + rename.

    Readers see either the previous file or the complete new one, never a
    partial write.

    Args:
        target: Destination path
        content: Text to write (UTF-8)
        mode: Optional permission bits applied before the rename
        dir_mode: Optional permission bits for a newly created parent directory

    Returns:
        The target path
    """
    target = Path(target)
    parent = target.parent
    if not parent.exists():
        parent.mkdir(parents=True, exist_ok=True)
        if dir_mode is not None:
            os.chmod(parent, dir_mode)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        if mode is not None:
            os.chmod(tmp_name, mode)
        os.replace(tmp_name, target)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return target
