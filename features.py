# features.py - User-facing features (Notifications, Posture log, Baseline)

import json
import logging
import os
import threading
import time
from collections import deque

from plyer import notification

import configure_setting as config
from posture_core import BAD, GOOD, WARNING, NotificationError, PersistenceError

logger = logging.getLogger(__name__)

INDICATOR_COLORS = {
    GOOD: config.COLOR_GOOD,
    WARNING: config.COLOR_BAD,
    BAD: config.COLOR_BAD,
}


# ============================================================================
# NOTIFICATION MANAGER (Desktop alerts + status indicator)
# ============================================================================
class NotificationManager:
    """
    Sends posture alerts and keeps the status indicator colour.

    - Desktop notifications go through plyer
    - A cooldown stops a stream of bad frames from spamming the desktop
    """

    def __init__(self, cooldown=config.ALERT_COOLDOWN, notifier=None, clock=time.monotonic):
        self.cooldown = cooldown
        self._notifier = notifier or notification
        self._clock = clock
        self.last_alert = None       # Clock reading of last alert sent
        self.alert_count = 0         # How many alerts sent this session
        self.indicator = None        # Current indicator status

    def notify(self, title, body, severity=WARNING):
        """
        Show a desktop notification unless still cooling down.

        Returns:
            bool: True if a notification was shown

        Raises:
            NotificationError: the OS notification failed
        """
        now = self._clock()
        if self.last_alert is not None and now - self.last_alert < self.cooldown:
            return False

        try:
            self._notifier.notify(title=title, message=body, timeout=5)
        except Exception as e:
            raise NotificationError(f"Notification failed: {e}") from e

        self.last_alert = now
        self.alert_count += 1
        logger.info("🔔 Alert sent (#%d, %s): %s", self.alert_count, severity, body)
        return True

    def set_indicator(self, status):
        """Record the indicator status (green good, red warning/bad, gray otherwise)"""
        self.indicator = status
        return True

    @property
    def indicator_color(self):
        return INDICATOR_COLORS.get(self.indicator, config.COLOR_IDLE)

    def get_stats(self):
        return {
            'total_alerts': self.alert_count,
            'indicator': self.indicator,
        }


# ============================================================================
# POSTURE DATA STORE (Baseline + capped posture log, JSON on disk)
# ============================================================================
class PostureDataStore:
    """
    Stores the calibration baseline and the posture log as JSON files.

    The log keeps only the newest `retention` entries in memory and is
    written to disk at most every `flush_every` seconds; call flush()
    before exiting to write what is still pending.
    """

    def __init__(self, data_dir=config.DATA_DIR, retention=config.LOG_RETENTION,
                 flush_every=config.RECORD_EVERY, clock=time.monotonic):
        self.data_dir = data_dir
        self.retention = retention
        self.flush_every = flush_every
        self.baseline_path = os.path.join(data_dir, "baseline.json")
        self.logs_path = os.path.join(data_dir, "posture-logs.json")
        self._clock = clock
        self._lock = threading.Lock()
        self._logs = None           # loaded lazily from disk
        self._pending = 0           # entries not yet written
        self.last_flush = None      # Clock reading of last log write

    def _ensure_dir(self):
        os.makedirs(self.data_dir, exist_ok=True)

    def _write_json(self, path, data, indent=None):
        self._ensure_dir()
        tmp_path = path + ".tmp"
        with open(tmp_path, 'w') as f:
            if indent is None:
                json.dump(data, f, separators=(',', ':'))
            else:
                json.dump(data, f, indent=indent)
        os.replace(tmp_path, path)

    def save_baseline(self, baseline):
        """
        Save calibration data, e.g. {'scaleFactor': 0.21, 'samples': 60}

        Raises:
            PersistenceError: file could not be written
        """
        try:
            with self._lock:
                self._write_json(self.baseline_path, baseline, indent=2)
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Failed to save baseline: {e}") from e
        logger.info("Baseline data saved to %s", self.baseline_path)
        return True

    def get_baseline(self):
        """
        Load previously saved baseline

        Returns:
            dict: Baseline data or None if not found / unreadable / malformed
        """
        try:
            with open(self.baseline_path, 'r') as f:
                baseline = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("⚠️  Unreadable baseline file (%s). Run calibration again.", e)
            return None

        scale = baseline.get('scaleFactor') if isinstance(baseline, dict) else None
        if isinstance(scale, bool) or not isinstance(scale, (int, float)):
            logger.warning("⚠️  Malformed baseline file %s. Run calibration again.",
                           self.baseline_path)
            return None
        return baseline

    def _read_logs(self):
        try:
            with open(self.logs_path, 'r') as f:
                logs = json.load(f)
        except FileNotFoundError:
            return []
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Posture log unreadable, starting a new one: %s", e)
            return []
        return logs if isinstance(logs, list) else []

    def _loaded_logs(self):
        if self._logs is None:
            self._logs = deque(self._read_logs(), maxlen=self.retention)
        return self._logs

    def load_posture_logs(self):
        """All retained entries, oldest first, including ones not yet flushed"""
        with self._lock:
            return list(self._loaded_logs())

    def append_posture_log(self, entry):
        """
        Append one {timestamp, status, message, measurements} entry.

        Returns:
            bool: True if the log was written to disk by this call

        Raises:
            PersistenceError: file could not be written
        """
        with self._lock:
            self._loaded_logs().append(entry)
            self._pending += 1
            now = self._clock()
            if self.last_flush is not None and now - self.last_flush < self.flush_every:
                return False
            return self._flush_locked(now)

    def flush(self):
        """
        Write pending log entries to disk.

        Raises:
            PersistenceError: file could not be written
        """
        with self._lock:
            if not self._pending:
                return False
            return self._flush_locked(self._clock())

    def _flush_locked(self, now):
        try:
            self._write_json(self.logs_path, list(self._logs))
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Failed to save posture log: {e}") from e
        self._pending = 0
        self.last_flush = now
        return True

    def summarize_logs(self, since=None):
        """
        Status distribution of the stored log.

        Args:
            since: optional epoch-ms timestamp; older entries are ignored

        Returns:
            dict: counts and percentages per status
        """
        logs = self.load_posture_logs()
        if since is not None:
            logs = [x for x in logs if x.get('timestamp', 0) >= since]

        total = len(logs)
        summary = {'entries': total}
        for status in (GOOD, WARNING, BAD):
            count = sum(1 for x in logs if x.get('status') == status)
            summary[f'{status}_count'] = count
            summary[f'{status}_percent'] = round(count / total * 100, 1) if total else 0
        return summary
