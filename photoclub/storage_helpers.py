import asyncio
import logging
from typing import Any, Iterable

logger = logging.getLogger(__name__)


async def call_storage(storage: Any, method_name: str, *args, **kwargs) -> Any:
    """Call storage method in an async-friendly way.

    If the storage object exposes an `async_<method_name>` coroutine, it is awaited.
    Otherwise the sync method is executed in the event loop's default executor.
    """
    async_name = f"async_{method_name}"
    if hasattr(storage, async_name):
        method = getattr(storage, async_name)
        return await method(*args, **kwargs)

    if hasattr(storage, method_name):
        loop = asyncio.get_running_loop()
        func = lambda: getattr(storage, method_name)(*args, **kwargs)
        return await loop.run_in_executor(None, func)

    raise AttributeError(f"Storage has no method '{method_name}' or '{async_name}'")


def remove_files(storage: Any, filenames: Iterable[str]) -> None:
    """Best-effort removal of stored files; failures are logged, not raised."""
    for name in filenames:
        if not name:
            continue
        try:
            storage.delete_file(name)
        except OSError as e:
            logger.warning("Failed to remove %s from storage: %s", name, e)


async def async_remove_files(storage: Any, filenames: Iterable[str]) -> None:
    names = [n for n in filenames if n]
    if not names:
        return
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, remove_files, storage, names)
