import asyncio
import logging
import os
from typing import Callable, Dict, Optional


logger = logging.getLogger(__name__)


def _read_text(path: str) -> str:
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


class DevServerWatcher:
    """Polls build artifacts and reports changed contents to callbacks.

    Each watched path maps to a callback receiving the file's new text. A
    file is reported once when first seen and again whenever its mtime or
    size changes. Missing files are skipped until they appear.
    """

    def __init__(self, interval: float = 1.0):
        self.interval = interval
        self._callbacks: Dict[str, Callable[[str], None]] = {}
        self._signatures: Dict[str, tuple] = {}
        self._task: Optional[asyncio.Task] = None

    def watch(self, path: str, callback: Callable[[str], None]) -> None:
        self._callbacks[path] = callback

    async def check(self) -> int:
        changed = 0
        for path, callback in self._callbacks.items():
            try:
                st = os.stat(path)
            except FileNotFoundError:
                continue
            signature = (st.st_mtime_ns, st.st_size)
            if self._signatures.get(path) == signature:
                continue
            try:
                source = await asyncio.to_thread(_read_text, path)
            except UnicodeDecodeError as e:
                # Remembered so the same broken build is reported once, not every poll
                self._signatures[path] = signature
                logger.error(f"{path} is not valid UTF-8, keeping previous version: {str(e)}")
                continue
            except OSError as e:
                logger.warning(f"Could not read {path}: {str(e)}")
                continue
            self._signatures[path] = signature
            logger.debug(f"{path} changed, reloading")
            callback(source)
            changed += 1
        return changed

    async def _run(self) -> None:
        while True:
            try:
                await self.check()
            except Exception as e:
                logger.error(f"Dev watcher check failed: {str(e)}", exc_info=True)
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())
            logger.info(f"Watching {len(self._callbacks)} build artifacts for changes")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None


def setup_dev_server(
    *,
    bundle_path: str,
    template_path: str,
    bundle_updated: Callable[[str], None],
    index_updated: Callable[[str], None],
    interval: float = 1.0,
) -> DevServerWatcher:
    watcher = DevServerWatcher(interval=interval)
    watcher.watch(bundle_path, bundle_updated)
    watcher.watch(template_path, index_updated)
    return watcher
