from __future__ import annotations

import re
import uuid
from pathlib import Path

from .config import TMP_DIR
from .logging_utils import get_logger

log = get_logger(__name__)

_ID_RE = re.compile(r"^[0-9a-f]{32}$")


class StoreError(RuntimeError):
    pass


def _safe_resolve(base: Path, unsafe_path: str) -> Path:
    candidate = (base / unsafe_path).resolve()
    if not str(candidate).startswith(str(base.resolve())):
        raise StoreError("Invalid path")
    return candidate


class TempStore:
    """Single-use artefacts kept on disk until they are downloaded once."""

    def __init__(self, root: Path = TMP_DIR) -> None:
        self.root = Path(root)

    def _path(self, item_id: str, suffix: str) -> Path:
        if not _ID_RE.match(str(item_id or "")):
            raise StoreError(f"Invalid id: {item_id!r}")
        return _safe_resolve(self.root, f"{item_id}{suffix}")

    def put(self, data: bytes, suffix: str = ".zip") -> str:
        self.root.mkdir(parents=True, exist_ok=True)
        item_id = uuid.uuid4().hex
        path = self._path(item_id, suffix)
        tmp = path.with_name(path.name + ".part")
        tmp.write_bytes(data)
        tmp.replace(path)
        log.info("Stored %s (%d bytes)", path.name, len(data))
        return item_id

    def pop(self, item_id: str, suffix: str = ".zip") -> bytes:
        path = self._path(item_id, suffix)
        try:
            data = path.read_bytes()
        except FileNotFoundError as e:
            raise StoreError(f"Not found: {item_id}") from e
        path.unlink(missing_ok=True)
        return data
