from __future__ import annotations

import asyncio
import os
from typing import Optional


def is_remote(locator: str) -> bool:
    return locator.startswith(("http://", "https://"))


def resolve_locator(locator: str, base_dir: Optional[str]) -> str:
    """Map a file:// locator or a bare relative/absolute path onto the filesystem."""
    rest = locator[7:] if locator.startswith("file://") else locator
    # Absolute filesystem root
    if rest.startswith("/"):
        return "/" + rest.lstrip("/")
    # Home directory
    if rest.startswith("~"):
        return os.path.expanduser(rest)
    base = base_dir or os.getcwd()
    # Empty → source dir or CWD
    if rest == "":
        return base
    return os.path.normpath(os.path.join(base, rest))


def _read_text(path: str) -> str:
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


async def read_source(locator: str, base_dir: Optional[str] = None) -> tuple[str, str]:
    """Read a local source for import. Returns (text, resolved path)."""
    path = resolve_locator(locator, base_dir)
    if os.path.isdir(path):
        raise IsADirectoryError(path)
    if not os.path.isfile(path):
        raise FileNotFoundError(path)
    loop = asyncio.get_running_loop()
    text = await loop.run_in_executor(None, _read_text, path)
    return text, path
