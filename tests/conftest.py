from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest

from bms_bridge.services.hardware_client import DirectReply, HardwareClient


class FakeHardwareClient(HardwareClient):
    """Hardware client that records requests instead of talking HTTP."""

    def __init__(self, available: bool = True, fail_paths=(), status=None, settings=None):
        super().__init__("http://hardware.test")
        self.available = available
        self.fail_paths = set(fail_paths)
        self.probes = 0
        self.requests: List[Dict[str, Any]] = []
        self.status = status
        self.settings = settings

    async def is_available(self) -> bool:
        self.probes += 1
        return self.available

    async def post(self, path, params=None, json=None) -> DirectReply:
        self.requests.append({"path": path, "params": params, "json": json})
        if path in self.fail_paths:
            return DirectReply(ok=False, status=500, error="HTTP 500")
        return DirectReply(ok=True, status=200)

    async def get_status(self):
        return self.status

    async def get_settings(self):
        return self.settings


class FakeMQTT:
    def __init__(self, accept: bool = True, raises: Optional[Exception] = None):
        self.accept = accept
        self.raises = raises
        self.published: List[tuple] = []
        self.connected = True

    async def publish(self, topic: str, message: Dict[str, Any]) -> bool:
        if self.raises is not None:
            raise self.raises
        self.published.append((topic, message))
        return self.accept

    def is_connected(self) -> bool:
        return self.connected


class FakeDatabase:
    def __init__(self, fail: bool = False, raises: Optional[Exception] = None):
        self.fail = fail
        self.raises = raises
        self.snapshots = []
        self.connected = True

    async def save_snapshot(self, snapshot):
        if self.raises is not None:
            raise self.raises
        if self.fail:
            return None
        self.snapshots.append(snapshot)
        return len(self.snapshots)

    async def get_latest_snapshot(self):
        if not self.snapshots:
            return None
        return self.snapshots[-1].model_dump(mode="json")

    async def get_recent_snapshots(self, limit: int = 10):
        return [s.model_dump(mode="json") for s in reversed(self.snapshots)][:limit]

    async def get_history(self, start, end):
        return [
            s.model_dump(mode="json")
            for s in reversed(self.snapshots)
            if start <= s.timestamp <= end
        ]

    def is_connected(self) -> bool:
        return self.connected


class FakeCache:
    def __init__(self, connected: bool = True):
        self.connected = connected
        self.latest = None

    def is_connected(self) -> bool:
        return self.connected

    async def set_latest_snapshot(self, data):
        self.latest = data
        return True

    async def get_latest_snapshot(self):
        return self.latest


class FakePublisher:
    def __init__(self, raises: Optional[Exception] = None):
        self.raises = raises
        self.events: List[tuple] = []

    async def broadcast(self, data, topic="bms-status"):
        if self.raises is not None:
            raise self.raises
        self.events.append((topic, data))
        return 1


FIXED_NOW = datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def hardware():
    return FakeHardwareClient()


@pytest.fixture
def mqtt():
    return FakeMQTT()


@pytest.fixture
def database():
    return FakeDatabase()


@pytest.fixture
def cache():
    return FakeCache()


@pytest.fixture
def publisher():
    return FakePublisher()


@pytest.fixture
def status_payload():
    return {
        "total_voltage": 13.21,
        "current": -1.5,
        "temperature": 27.4,
        "remaining_capacity_percent": 81.0,
        "charge_fet_status": True,
        "discharge_fet_status": None,
        "cell_voltages": [3.301, 3.299, 3.305, 3.302],
        "timestamp": "1999-01-01T00:00:00",
        "firmware": "ignored",
    }
