"""Shared fixtures for drivesync tests."""

import threading
from pathlib import Path
from typing import Any, Optional

import pytest

from drivesync.exceptions import RemoteNotFoundError
from drivesync.sync import FingerprintStore


class FakeRemote:
    """In-memory remote storage that records every call.

    Set ``fail_with`` to make the next calls raise, and ``gate`` to make
    uploads wait until the event is set.
    """

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.names: dict[str, str] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail_with: Optional[Exception] = None
        self.gate: Optional[threading.Event] = None
        self.entered = threading.Event()
        self._counter = 0
        self._lock = threading.Lock()

    def _before_call(self) -> None:
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(5)
        if self.fail_with is not None:
            raise self.fail_with

    def create_object(self, data: bytes, name: str) -> str:
        self._before_call()
        with self._lock:
            self._counter += 1
            remote_id = f"R{self._counter}"
            self.objects[remote_id] = data
            self.names[remote_id] = name
            self.calls.append(("create", remote_id))
        return remote_id

    def update_object(self, remote_id: str, data: bytes) -> None:
        self._before_call()
        with self._lock:
            if remote_id not in self.objects:
                raise RemoteNotFoundError(f"No object {remote_id}")
            self.objects[remote_id] = data
            self.calls.append(("update", remote_id))

    def download_object(self, remote_id: str) -> bytes:
        self._before_call()
        with self._lock:
            self.calls.append(("download", remote_id))
            if remote_id not in self.objects:
                raise RemoteNotFoundError(f"No object {remote_id}")
            return self.objects[remote_id]

    def get_object(self, remote_id: str) -> dict[str, Any]:
        if remote_id not in self.objects:
            raise RemoteNotFoundError(f"No object {remote_id}")
        return {"id": remote_id, "name": self.names.get(remote_id, remote_id)}

    def add_object(self, remote_id: str, data: bytes, name: str) -> None:
        """Seed an object as if it was uploaded by someone else."""
        self.objects[remote_id] = data
        self.names[remote_id] = name

    @property
    def mutations(self) -> list[tuple[str, str]]:
        return [call for call in self.calls if call[0] in ("create", "update")]


@pytest.fixture
def remote():
    """Provide an empty fake remote."""
    return FakeRemote()


@pytest.fixture
def state_dir(tmp_path):
    """Directory for the fingerprint store."""
    return tmp_path / "state"


@pytest.fixture
def files_dir(tmp_path):
    """Directory holding the files under sync."""
    path = tmp_path / "files"
    path.mkdir()
    return path


@pytest.fixture
def store(state_dir):
    """Provide an opened fingerprint store."""
    with FingerprintStore(Path(state_dir)) as opened:
        yield opened
