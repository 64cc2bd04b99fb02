# Tests for the posture data store and notification manager

import json

import pytest

import configure_setting as config
from features import NotificationManager, PostureDataStore
from posture_core import BAD, GOOD, WARNING, NotificationError, PersistenceError


class RecordingNotifier:
    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    def notify(self, title, message, timeout):
        if self.fail:
            raise RuntimeError("no notification backend")
        self.sent.append((title, message))


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


# ============================================================================
# POSTURE DATA STORE
# ============================================================================
def test_baseline_round_trip(tmp_path):
    store = PostureDataStore(data_dir=str(tmp_path / "data"))
    assert store.get_baseline() is None
    store.save_baseline({'scaleFactor': 0.21, 'samples': 60})
    assert store.get_baseline() == {'scaleFactor': 0.21, 'samples': 60}


def test_corrupt_baseline_reads_as_none(tmp_path):
    store = PostureDataStore(data_dir=str(tmp_path))
    (tmp_path / "baseline.json").write_text("{not json")
    assert store.get_baseline() is None


@pytest.mark.parametrize("content", [
    "[0.21, 60]",
    '{"scaleFactor": "0.21"}',
    '{"scaleFactor": true}',
    '{"samples": 60}',
])
def test_malformed_baseline_reads_as_none(tmp_path, content):
    store = PostureDataStore(data_dir=str(tmp_path))
    (tmp_path / "baseline.json").write_text(content)
    assert store.get_baseline() is None


def test_integer_scale_factor_is_accepted(tmp_path):
    store = PostureDataStore(data_dir=str(tmp_path))
    (tmp_path / "baseline.json").write_text('{"scaleFactor": 1}')
    assert store.get_baseline() == {'scaleFactor': 1}


def test_log_writes_are_throttled_until_flush(tmp_path):
    clock = FakeClock()
    store = PostureDataStore(data_dir=str(tmp_path), flush_every=5, clock=clock)

    assert store.append_posture_log({'timestamp': 0, 'status': GOOD}) is True
    for i in range(1, 50):
        clock.now = i * 0.05
        assert store.append_posture_log({'timestamp': i, 'status': GOOD}) is False

    with open(store.logs_path) as f:
        assert len(json.load(f)) == 1
    assert len(store.load_posture_logs()) == 50

    clock.now = 5.0
    assert store.append_posture_log({'timestamp': 50, 'status': BAD}) is True
    with open(store.logs_path) as f:
        assert len(json.load(f)) == 51

    store.append_posture_log({'timestamp': 51, 'status': GOOD})
    assert store.flush() is True
    assert store.flush() is False
    with open(store.logs_path) as f:
        assert json.load(f)[-1]['timestamp'] == 51


def test_log_file_is_compact_json(tmp_path):
    store = PostureDataStore(data_dir=str(tmp_path), flush_every=0)
    store.append_posture_log({'timestamp': 1, 'status': GOOD, 'measurements': {'a': 1}})
    store.append_posture_log({'timestamp': 2, 'status': BAD, 'measurements': {'a': 2}})
    text = (tmp_path / "posture-logs.json").read_text()
    assert "\n" not in text
    assert ", " not in text and ": " not in text


def test_existing_log_is_loaded_once_and_kept(tmp_path):
    (tmp_path / "posture-logs.json").write_text(json.dumps(
        [{'timestamp': i, 'status': GOOD} for i in range(3)]))
    store = PostureDataStore(data_dir=str(tmp_path), retention=4, flush_every=0)
    store.append_posture_log({'timestamp': 3, 'status': BAD})
    store.append_posture_log({'timestamp': 4, 'status': BAD})

    with open(store.logs_path) as f:
        assert [x['timestamp'] for x in json.load(f)] == [1, 2, 3, 4]


def test_log_retention_keeps_newest(tmp_path):
    store = PostureDataStore(data_dir=str(tmp_path), retention=5, flush_every=0)
    for i in range(8):
        store.append_posture_log({'timestamp': i, 'status': GOOD, 'message': 'ok',
                                  'measurements': {}})
    logs = store.load_posture_logs()
    assert [x['timestamp'] for x in logs] == [3, 4, 5, 6, 7]

    with open(store.logs_path) as f:
        assert len(json.load(f)) == 5


def test_corrupt_log_starts_fresh(tmp_path):
    store = PostureDataStore(data_dir=str(tmp_path))
    (tmp_path / "posture-logs.json").write_text("[broken")
    store.append_posture_log({'timestamp': 1, 'status': BAD})
    assert store.load_posture_logs() == [{'timestamp': 1, 'status': BAD}]


def test_unwritable_log_raises_persistence_error(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("")
    store = PostureDataStore(data_dir=str(blocker / "data"))
    with pytest.raises(PersistenceError):
        store.append_posture_log({'timestamp': 1, 'status': GOOD})
    with pytest.raises(PersistenceError):
        store.save_baseline({'scaleFactor': 0.2})


def test_summarize_logs(tmp_path):
    store = PostureDataStore(data_dir=str(tmp_path))
    assert store.summarize_logs()['entries'] == 0

    for i, status in enumerate([GOOD, GOOD, WARNING, BAD]):
        store.append_posture_log({'timestamp': i * 1000, 'status': status})

    summary = store.summarize_logs()
    assert summary['entries'] == 4
    assert summary['good_percent'] == 50.0
    assert summary['bad_count'] == 1

    recent = store.summarize_logs(since=2000)
    assert recent['entries'] == 2
    assert recent['good_count'] == 0


# ============================================================================
# NOTIFICATION MANAGER
# ============================================================================
def test_notify_respects_cooldown():
    clock = FakeClock()
    backend = RecordingNotifier()
    manager = NotificationManager(cooldown=30, notifier=backend, clock=clock)

    assert manager.notify("Posture Alert", "Forward Head", WARNING) is True
    clock.now = 10
    assert manager.notify("Posture Alert", "Forward Head", WARNING) is False
    clock.now = 31
    assert manager.notify("Posture Alert", "Head Tilt", BAD) is True

    assert backend.sent == [("Posture Alert", "Forward Head"),
                            ("Posture Alert", "Head Tilt")]
    assert manager.get_stats()['total_alerts'] == 2


def test_notify_failure_raises_notification_error():
    manager = NotificationManager(notifier=RecordingNotifier(fail=True))
    with pytest.raises(NotificationError):
        manager.notify("Posture Alert", "Forward Head", WARNING)
    assert manager.alert_count == 0


def test_indicator_colors():
    manager = NotificationManager(notifier=RecordingNotifier())
    assert manager.indicator_color == config.COLOR_IDLE
    manager.set_indicator(GOOD)
    assert manager.indicator_color == config.COLOR_GOOD
    manager.set_indicator(WARNING)
    assert manager.indicator_color == config.COLOR_BAD
    manager.set_indicator(BAD)
    assert manager.indicator_color == config.COLOR_BAD
    manager.set_indicator(None)
    assert manager.indicator_color == config.COLOR_IDLE
