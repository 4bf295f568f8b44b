"""
Per-shop JSON document persistence.

Every shop owns a directory under the data root:

  <data_dir>/<shop>/purchase-orders/<year>.json   {year, updated_at, orders}
  <data_dir>/<shop>/batches.json                  {shop, updated_at, batches}

Documents are always read whole, mutated in memory and written back with an
atomic replace (temporary file in the same directory, fsync, os.replace), so
a concurrent reader sees either the old or the new document, never a mix.
"""
import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

_UNSAFE_SHOP_CHARS = re.compile(r"[^a-z0-9._-]")


def sanitize_shop(shop: Optional[str]) -> str:
    """Return a filesystem-safe shop key ('default' when empty)."""
    s = str(shop or "").strip().lower()
    return _UNSAFE_SHOP_CHARS.sub("_", s) if s else "default"


class DocumentStore:
    """Reads and atomically replaces JSON documents scoped by shop."""

    def __init__(self, data_dir: Path, pretty: bool = True) -> None:
        self.data_dir = Path(data_dir)
        self.pretty = pretty
        self.data_dir.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def shop_dir(self, shop: str) -> Path:
        return self.data_dir / sanitize_shop(shop)

    def path(self, shop: str, *parts: str) -> Path:
        return self.shop_dir(shop).joinpath(*parts)

    def list_documents(self, shop: str, *parts: str) -> list[Path]:
        """Return the JSON documents in a shop sub-directory, sorted by name."""
        directory = self.path(shop, *parts)
        if not directory.is_dir():
            return []
        return sorted(p for p in directory.glob("*.json") if p.is_file())

    # ------------------------------------------------------------------
    # Read / write
    # ------------------------------------------------------------------

    def read(self, path: Path, default: Callable[[], Any] = dict) -> Any:
        """
        Load a document.  A missing file yields default().  A corrupt file
        is an error: silently treating it as empty would let the next write
        wipe every record it held.
        """
        if not path.exists():
            return default()
        with open(path, encoding="utf-8") as f:
            return json.load(f)

    def write(self, path: Path, document: Any) -> None:
        """Atomically replace *path* with the serialised document."""
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2 if self.pretty else None, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise
        logger.debug("Document written: %s", path)
