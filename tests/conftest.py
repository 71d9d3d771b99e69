import os
import stat
import sys
import threading
import time
from pathlib import Path

import pytest

from rsync_watch.mirror import MirrorMode, MirrorResult


class FakeMirror:
    """Records incremental/full calls and answers with scripted exit statuses."""

    def __init__(self, statuses=(), delay: float = 0.0):
        self.statuses = list(statuses)
        self.delay = delay
        self.calls = []
        self.full_calls = 0
        self.active = 0
        self.max_active = 0
        self._guard = threading.Lock()

    def incremental(self, paths):
        with self._guard:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            self.calls.append(list(paths))
            status = self.statuses.pop(0) if self.statuses else 0
        try:
            time.sleep(self.delay)
        finally:
            with self._guard:
                self.active -= 1
        return MirrorResult(mode=MirrorMode.INCREMENTAL, returncode=status)

    def full(self, cancel=None):
        with self._guard:
            self.full_calls += 1
        if cancel is not None and cancel.wait(self.delay):
            return MirrorResult(mode=MirrorMode.FULL, returncode=-15, cancelled=True)
        return MirrorResult(mode=MirrorMode.FULL, returncode=0)


class CountingGate:
    def __init__(self):
        self.requests = 0

    def request_sync(self):
        self.requests += 1


@pytest.fixture
def fake_mirror():
    return FakeMirror()


@pytest.fixture
def counting_gate():
    return CountingGate()


@pytest.fixture
def make_script(tmp_path):
    """Write an executable /bin/sh script standing in for rsync."""
    if sys.platform == "win32":
        pytest.skip("shell scripts need a POSIX shell")

    def _make(body: str, name: str = "fake-rsync") -> Path:
        path = tmp_path / name
        path.write_text("#!/bin/sh\n" + body + "\n", encoding="utf-8")
        os.chmod(path, os.stat(path).st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return _make
