import os
import secrets
from pathlib import Path

from credvault.core.errors import PersistenceError

DIR_MODE = 0o700
FILE_MODE = 0o600


def ensure_private_dir(path: Path):
    if path.exists():
        return
    try:
        path.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
    except OSError as exc:
        raise PersistenceError(f"cannot create vault directory {path}: {exc.strerror or exc}") from exc


def atomic_write(target_path: Path, payload: str):
    """
    Write to a private sibling temp file, fsync, then rename over the target.
    Readers see either the old blob or the new one, never a torn write.
    There is no lock: two writers racing both succeed and the last rename wins.
    """
    ensure_private_dir(target_path.parent)
    tmp = target_path.with_name(f".{target_path.name}.{secrets.token_hex(4)}.tmp")
    try:
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_EXCL, FILE_MODE)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp, FILE_MODE)
        os.replace(tmp, target_path)
    except OSError as exc:
        try:
            tmp.unlink()
        except OSError:
            pass
        raise PersistenceError(f"failed to write {target_path.name}: {exc.strerror or exc}") from exc


def read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        raise PersistenceError(f"failed to read {path.name}: {exc.strerror or exc}") from exc
