from __future__ import annotations

import errno
import shutil
from pathlib import Path

TMP_SUFFIX = ".tmp"


def tmp_path_for(target: Path) -> Path:
    return target.with_suffix(target.suffix + TMP_SUFFIX)


def replace_file(tmp_path: Path, target: Path) -> None:
    """Move ``tmp_path`` over ``target``, copying when the target cannot be replaced."""
    try:
        tmp_path.replace(target)
    except OSError as exc:
        # Bind-mounted single files in containers cannot be atomically replaced.
        if exc.errno != errno.EBUSY:
            raise
        shutil.copyfile(tmp_path, target)
        tmp_path.unlink()
