import asyncio
import re
import time
from datetime import datetime
from pathlib import Path

MAX_COLLISION_SUFFIX = 1000

_UNSAFE_NAME_CHARS = re.compile(r'[\\/:*?"<>|]+')


def output_stamp(moment: datetime | None = None) -> str:
    """Compact local timestamp used in output file names: YYYYmmdd-HHMMSS."""
    return (moment or datetime.now()).strftime("%Y%m%d-%H%M%S")


def output_base_name(label: str, stamp: str, ordinal: int | None = None) -> str:
    """Build "<label>-<stamp>[-NN]"; `ordinal` is 1-based and only set for multi-output runs."""
    safe_label = _UNSAFE_NAME_CHARS.sub("-", label).strip(" -.") or "generation"
    suffix = f"-{ordinal:02d}" if ordinal is not None else ""
    return f"{safe_label}-{stamp}{suffix}"


class OutputFileStore:
    """Writes generated outputs into one folder without overwriting existing files."""

    def __init__(self, root: Path) -> None:
        self._root = root

    @property
    def root(self) -> Path:
        return self._root

    async def save(self, base_name: str, extension: str, data: bytes) -> Path:
        """Write `data` to the first free "<base_name>[ (n)].<extension>" path."""
        return await asyncio.to_thread(self._save_sync, base_name, extension.lstrip("."), data)

    async def write_text(self, path: Path, text: str) -> None:
        await asyncio.to_thread(path.write_text, text, encoding="utf-8")

    def _save_sync(self, base_name: str, extension: str, data: bytes) -> Path:
        self._root.mkdir(parents=True, exist_ok=True)
        for attempt in range(MAX_COLLISION_SUFFIX):
            suffix = f" ({attempt})" if attempt else ""
            path = self._root / f"{base_name}{suffix}.{extension}"
            try:
                with path.open("xb") as handle:
                    handle.write(data)
            except FileExistsError:
                continue
            return path
        path = self._root / f"{base_name}-{int(time.time() * 1000):x}.{extension}"
        path.write_bytes(data)
        return path
