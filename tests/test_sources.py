import threading
from pathlib import Path

import pytest
from watchdog.events import (
    DirCreatedEvent,
    DirModifiedEvent,
    FileClosedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileOpenedEvent,
)

from rsync_watch.errors import ProducerTerminatedError
from rsync_watch.events import ChangeEvent, Operation
from rsync_watch.sources import InotifywaitSource, WatchdogSource, make_source, to_change_events


def test_watchdog_events_map_to_change_events():
    assert to_change_events(FileModifiedEvent("/s/a")) == [ChangeEvent(Operation.MODIFY, "/s/a")]
    assert to_change_events(FileDeletedEvent("/s/a")) == [ChangeEvent(Operation.DELETE, "/s/a")]
    assert to_change_events(FileClosedEvent("/s/a")) == [ChangeEvent(Operation.CLOSE_WRITE, "/s/a")]
    assert to_change_events(DirCreatedEvent("/s/d")) == [ChangeEvent(Operation.CREATE, "/s/d", is_dir=True)]


def test_move_yields_both_ends():
    assert to_change_events(FileMovedEvent("/s/old", "/s/new")) == [
        ChangeEvent(Operation.MOVE, "/s/old"),
        ChangeEvent(Operation.MOVE, "/s/new"),
    ]


def test_directory_modified_and_opened_are_dropped():
    assert to_change_events(DirModifiedEvent("/s/d")) == []
    assert to_change_events(FileOpenedEvent("/s/a")) == []


def test_watchdog_source_reports_file_writes(tmp_path):
    source = WatchdogSource(tmp_path, poll_interval=0.1)
    guard = threading.Timer(10, source.stop)
    with source:
        guard.start()
        (tmp_path / "new.txt").write_text("x", encoding="utf-8")
        seen = set()
        for event in source:
            seen.add(Path(event.path).name)
            if "new.txt" in seen:
                break
    guard.cancel()
    assert "new.txt" in seen


def test_watchdog_source_iteration_ends_after_stop(tmp_path):
    source = WatchdogSource(tmp_path, poll_interval=0.05).start()
    source.stop()
    assert list(source) == []


def test_inotifywait_command():
    cmd = InotifywaitSource(Path("/srv/src")).command()
    assert cmd[:4] == ["inotifywait", "-m", "-r", "-q"]
    assert "modify,move,create,delete,attrib,close_write" in cmd
    assert cmd[-3:] == ["--format", "%e %w%f", "/srv/src"]


def test_inotifywait_lines_are_passed_through_until_exit(make_script, tmp_path):
    script = make_script('echo "MODIFY /srv/src/a.txt"\necho "CREATE,ISDIR /srv/src/d"\nexit 1')
    source = InotifywaitSource(tmp_path, inotifywait=str(script))
    with source:
        lines = list(source)
    assert lines == ["MODIFY /srv/src/a.txt\n", "CREATE,ISDIR /srv/src/d\n"]


def test_missing_inotifywait_is_a_producer_failure(tmp_path):
    with pytest.raises(ProducerTerminatedError):
        InotifywaitSource(tmp_path, inotifywait=str(tmp_path / "missing")).start()


def test_make_source(tmp_path):
    assert isinstance(make_source("watchdog", tmp_path), WatchdogSource)
    assert isinstance(make_source("inotifywait", tmp_path), InotifywaitSource)
    with pytest.raises(ValueError):
        make_source("fanotify", tmp_path)
