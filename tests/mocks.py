"""Mock utilities for testing external dependencies."""

from unittest.mock import AsyncMock


class RecordingNotifier:
    """Notification requester that keeps requests in memory."""

    def __init__(self, fail: bool = False):
        self.requests: list[tuple] = []
        self.fail = fail

    async def request(self, client_id, kind, data):
        if self.fail:
            raise ConnectionError("notification backend down")
        self.requests.append((client_id, kind, data))


class FakeRedis:
    """Mock redis.asyncio client capturing stream appends."""

    def __init__(self):
        self.entries: list[tuple[str, dict]] = []
        self.close = AsyncMock()

    async def xadd(self, stream, fields, maxlen=None, approximate=True):
        self.entries.append((stream, fields))
        return f"{len(self.entries)}-0"
