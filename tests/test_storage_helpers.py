import asyncio
import logging

import pytest

from photoclub import storage_helpers

from tests._helpers import FakeDeleteStorage


class AsyncStorage:
    def __init__(self, data):
        self._data = data

    async def async_read_file(self, name):
        return self._data


class SyncStorage:
    def __init__(self, data):
        self._data = data

    def read_file(self, name):
        return self._data


def test_call_storage_prefers_async():
    res = asyncio.run(storage_helpers.call_storage(AsyncStorage(b'X'), 'read_file', 'f'))
    assert res == b'X'


def test_call_storage_executes_sync_in_executor():
    res = asyncio.run(storage_helpers.call_storage(SyncStorage(b'Y'), 'read_file', 'f'))
    assert res == b'Y'


def test_call_storage_missing_method_raises():
    class Empty: ...

    with pytest.raises(AttributeError):
        asyncio.run(storage_helpers.call_storage(Empty(), 'read_file', 'f'))


def test_remove_files_skips_empty_names():
    storage = FakeDeleteStorage()
    storage_helpers.remove_files(storage, ["a.jpg", None, "", "thumb_a.jpg"])
    assert storage.deleted == ["a.jpg", "thumb_a.jpg"]


def test_remove_files_logs_and_continues_on_failure(caplog):
    caplog.set_level(logging.WARNING)
    storage = FakeDeleteStorage(fail_on={"a.jpg"})

    storage_helpers.remove_files(storage, ["a.jpg", "thumb_a.jpg"])

    assert storage.deleted == ["thumb_a.jpg"]
    assert any("Failed to remove a.jpg" in r.getMessage() for r in caplog.records)


def test_async_remove_files_runs_in_executor():
    storage = FakeDeleteStorage()
    asyncio.run(storage_helpers.async_remove_files(storage, ["x.jpg", None]))
    assert storage.deleted == ["x.jpg"]
