import logging
from pathlib import Path

import pytest

from rsync_watch.errors import MalformedEventError, ProducerTerminatedError
from rsync_watch.events import ChangeEvent, EventConsumer, Operation, parse_event_line
from rsync_watch.ignore import IgnoreMatcher
from rsync_watch.ledger import PendingLedger

ROOT = Path("/srv/src")


@pytest.mark.parametrize(
    "line, op, path, is_dir",
    [
        ("MODIFY /srv/src/a.txt\n", Operation.MODIFY, "/srv/src/a.txt", False),
        ("CLOSE_WRITE,CLOSE /srv/src/a b.txt", Operation.CLOSE_WRITE, "/srv/src/a b.txt", False),
        ("CREATE,ISDIR /srv/src/new", Operation.CREATE, "/srv/src/new", True),
        ("MOVED_TO /srv/src/x", Operation.MOVE, "/srv/src/x", False),
        ("DELETE /srv/src/y", Operation.DELETE, "/srv/src/y", False),
        ("ATTRIB /srv/src/z", Operation.ATTRIB, "/srv/src/z", False),
    ],
)
def test_parse_event_line(line, op, path, is_dir):
    event = parse_event_line(line)
    assert event == ChangeEvent(operation=op, path=path, is_dir=is_dir)


@pytest.mark.parametrize("line", ["", "MODIFY", "MODIFY ", "rest-of-a-name.txt", "OPEN /srv/src/a"])
def test_parse_event_line_rejects_malformed(line):
    with pytest.raises(MalformedEventError):
        parse_event_line(line)


def _consumer(gate, ignore=None):
    ledger = PendingLedger()
    return EventConsumer(ROOT, ledger, gate, ignore=ignore), ledger


def test_each_event_appends_relative_path_and_requests_sync(counting_gate):
    consumer, ledger = _consumer(counting_gate)
    consumer.handle("MODIFY /srv/src/a.txt")
    consumer.handle(ChangeEvent(Operation.DELETE, "/srv/src/sub/b.txt"))

    assert ledger.rotate() == ["a.txt", "sub/b.txt"]
    assert counting_gate.requests == 2
    assert consumer.consumed == 2


def test_malformed_lines_are_skipped_with_warning(counting_gate, caplog):
    consumer, ledger = _consumer(counting_gate)
    with caplog.at_level(logging.WARNING, logger="rsync_watch"):
        assert consumer.handle("garbage") is False
        assert consumer.handle("MODIFY /elsewhere/a.txt") is False
    assert ledger.rotate() == []
    assert counting_gate.requests == 0
    assert consumer.skipped == 2
    assert "malformed event" in caplog.text


def test_unrepresentable_path_is_dropped(counting_gate):
    consumer, ledger = _consumer(counting_gate)
    assert consumer.handle(ChangeEvent(Operation.CREATE, "/srv/src/a\nb")) is False
    assert ledger.rotate() == []
    assert counting_gate.requests == 0


def test_ignored_paths_are_not_queued(counting_gate):
    consumer, ledger = _consumer(counting_gate, IgnoreMatcher(["*.swp", "node_modules/"]))
    consumer.handle("MODIFY /srv/src/.a.txt.swp")
    consumer.handle("CREATE /srv/src/node_modules/pkg/index.js")
    consumer.handle("MODIFY /srv/src/keep.txt")
    assert ledger.rotate() == ["keep.txt"]
    assert counting_gate.requests == 1


def test_events_on_source_root_are_not_queued(counting_gate):
    consumer, ledger = _consumer(counting_gate)
    assert consumer.handle(ChangeEvent(Operation.ATTRIB, "/srv/src", is_dir=True)) is False
    assert consumer.handle("ATTRIB,ISDIR /srv/src/") is False
    assert ledger.rotate() == []
    assert counting_gate.requests == 0


def test_end_of_stream_is_fatal(counting_gate):
    consumer, ledger = _consumer(counting_gate)
    with pytest.raises(ProducerTerminatedError):
        consumer.consume(["MODIFY /srv/src/a.txt", "bogus"])
    assert ledger.rotate() == ["a.txt"]
    assert counting_gate.requests == 1
