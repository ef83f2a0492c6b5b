"""
Shared fixtures and fakes
"""
import asyncio
import itertools
import os
import threading
import time
from pathlib import Path
from typing import List

import pytest

from meerkat.bot.messages import TextMessage


class ClosingText(TextMessage):
    """Text message counting close() calls"""
    closed = 0

    def close(self):
        self.closed += 1


class FakeRegistrar:
    """Stands in for the OS watch facility, counting registrations"""

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.added: List[str] = []
        self.removed: List[str] = []
        self.lock = threading.Lock()

    def add(self, path: str) -> None:
        if self.delay:
            time.sleep(self.delay)
        if not os.path.isdir(path):
            raise FileNotFoundError(path)
        with self.lock:
            self.added.append(path)

    def remove(self, path: str) -> None:
        with self.lock:
            if path not in self.added:
                raise KeyError(path)
            self.added.remove(path)
            self.removed.append(path)


class FakeClient:
    """Chat transport recording what was sent, failing on demand"""

    def __init__(self, failures: int = 0, always_fail: bool = False):
        self.failures = failures
        self.always_fail = always_fail
        self.attempts = 0
        self.sent = []
        self.sent_event = asyncio.Event()

    async def send(self, message):
        self.attempts += 1
        if self.always_fail or self.failures > 0:
            self.failures -= 1
            raise ConnectionError("network is down")
        data, _ = message.to_request()
        self.sent.append((message.chat_id, data.get("text") or data.get("caption")))
        self.sent_event.set()
        return {"message_id": len(self.sent)}


def make_tree(root: Path, pattern: str) -> List[Path]:
    """
    Create directories from a brace pattern such as "{a,b}/{c,d}"

    Returns:
        Every created directory, intermediate ones included
    """
    levels = [level.strip("{}").split(",") for level in pattern.strip("/").split("/")]
    created = set()
    for combo in itertools.product(*levels):
        path = root
        for part in combo:
            path = path / part
            created.add(path)
        path.mkdir(parents=True, exist_ok=True)
    return sorted(created)


async def wait_for(predicate, timeout: float = 10.0, interval: float = 0.05):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


@pytest.fixture
def registrar():
    return FakeRegistrar()


@pytest.fixture
def tree(tmp_path):
    """{a,b}/{c,d}/{e,f}: 14 directories below tmp_path"""
    dirs = make_tree(tmp_path, "{a,b}/{c,d}/{e,f}")
    assert len(dirs) == 14
    return tmp_path
