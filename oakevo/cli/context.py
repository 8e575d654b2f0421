"""CLI runtime helpers — bridges sync CLI to the async loop."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Coroutine

from oakevo.config import settings


def run_async(coro: Coroutine) -> Any:
    """Run an async coroutine from sync CLI code."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    if loop and loop.is_running():
        # Already inside an event loop (e.g. invoked from a notebook)
        import concurrent.futures
        with concurrent.futures.ThreadPoolExecutor() as pool:
            return pool.submit(asyncio.run, coro).result()
    return asyncio.run(coro)


def workspace_path(path: Path | None) -> Path:
    return path if path is not None else settings.workspace_dir
