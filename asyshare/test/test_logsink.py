import re
import logging

from asyshare.logsink import LogSink, LogEntry


def test_ring_buffer_keeps_most_recent():
    sink = LogSink()
    for i in range(150):
        sink.append('message %d' % i)

    logs = sink.get_logs()
    assert len(logs) == 100
    assert logs == ['message %d' % i for i in range(50, 150)]


def test_custom_capacity():
    sink = LogSink(capacity=3)
    for msg in ['a', 'b', 'c', 'd']:
        sink.append(msg)
    assert sink.get_logs() == ['b', 'c', 'd']


def test_snapshot_is_a_copy():
    sink = LogSink()
    sink.append('first')
    snapshot = sink.snapshot()
    sink.append('second')
    assert [e.message for e in snapshot] == ['first']
    assert isinstance(snapshot[0], LogEntry)


def test_clear():
    sink = LogSink()
    sink.append('x')
    sink.clear()
    assert sink.get_logs() == []
    sink.append('y')
    assert sink.get_logs() == ['y']


def test_persist_toggle(tmp_path):
    log_dir = tmp_path / 'log'
    sink = LogSink(log_directory=str(log_dir))
    sink.append('not saved')
    assert sink.persisting is False

    sink.set_persist(True)
    assert sink.persisting is True
    sink.append('saved one')
    sink.append('saved two')
    sink.set_persist(False)
    sink.append('not saved either')

    lines = (log_dir / 'log.txt').read_text(encoding='utf-8').splitlines()
    assert len(lines) == 2
    assert re.match(r'^\[\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\] saved one$', lines[0])
    assert lines[1].endswith('] saved two')
    # the in-memory buffer is unaffected by persistence
    assert sink.get_logs() == ['not saved', 'saved one', 'saved two', 'not saved either']


def test_entry_str():
    entry = LogEntry('hi')
    assert re.match(r'^\[\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\] hi$', str(entry))


def test_sinks_do_not_register_loggers(tmp_path):
    before = len(logging.Logger.manager.loggerDict)
    for i in range(50):
        sink = LogSink(log_directory=str(tmp_path / ('log%d' % i)))
        sink.set_persist(True)
        sink.append('100% saved')
        sink.set_persist(False)
    assert len(logging.Logger.manager.loggerDict) == before
    assert (tmp_path / 'log7' / 'log.txt').read_text(encoding='utf-8').rstrip().endswith('] 100% saved')
