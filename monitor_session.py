# monitor_session.py - Session state machine (Setup -> Calibrating -> Monitoring <-> Paused)

import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import configure_setting as config
from posture_core import (InitializationError, InsufficientLandmarksError,
                          PostureAnalyzer, PostureError, PostureStatus,
                          ScaleCalibrator, extract_features)

logger = logging.getLogger(__name__)


class SessionState(Enum):
    SETUP = "setup"
    CALIBRATING = "calibrating"
    MONITORING = "monitoring"
    PAUSED = "paused"


# ============================================================================
# MODEL INITIALIZATION (bounded retry + overall timeout)
# ============================================================================
async def _initialize_with_retry(init_fn, attempts, backoff, pool):
    loop = asyncio.get_running_loop()
    last_error = None
    for attempt in range(1, attempts + 1):
        try:
            logger.info("Initializing pose model (attempt %d/%d)...", attempt, attempts)
            return await loop.run_in_executor(pool, init_fn)
        except Exception as e:
            last_error = e
            logger.warning("Initialization attempt %d failed: %s", attempt, e)
            if attempt < attempts:
                await asyncio.sleep(backoff)
    raise InitializationError(
        f"Failed to initialize after {attempts} attempts") from last_error


def initialize_with_retry(init_fn, attempts=config.INIT_ATTEMPTS,
                          backoff=config.INIT_BACKOFF, timeout=config.INIT_TIMEOUT):
    """
    Run a blocking initializer with bounded retries and an overall timeout.

    Attempts run on a private worker thread. When the timeout expires the
    call returns at once; an attempt still running is abandoned and its
    caller is expected to discard whatever it produces.

    Args:
        init_fn: callable that raises on failure
        attempts: maximum number of tries
        backoff: seconds to wait between tries
        timeout: seconds allowed for the whole handshake

    Returns:
        whatever init_fn returns

    Raises:
        InitializationError: all attempts failed or the timeout expired
    """
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="pose-init")

    async def run():
        return await asyncio.wait_for(
            _initialize_with_retry(init_fn, attempts, backoff, pool), timeout)

    try:
        return asyncio.run(run())
    except asyncio.TimeoutError as e:
        raise InitializationError(
            f"Pose model initialization timed out after {timeout}s") from e
    finally:
        pool.shutdown(wait=False, cancel_futures=True)


# ============================================================================
# SESSION CONTEXT (all mutable per-session state)
# ============================================================================
@dataclass
class SessionContext:
    calibrator: ScaleCalibrator
    state: SessionState = SessionState.SETUP
    scale_factor: Optional[float] = None
    last_status: Optional[PostureStatus] = None
    last_check: Optional[float] = None
    frames_received: int = 0
    frames_analyzed: int = 0
    frames_skipped: int = 0
    started_at: Optional[float] = field(default=None)

    def reset_calibration(self):
        self.calibrator.reset()
        self.scale_factor = None
        self.last_status = None
        self.last_check = None


# ============================================================================
# POSTURE MONITOR (top-level controller)
# ============================================================================
class PostureMonitor:
    """
    Owns one monitoring session and routes every frame by session state.

    Frames must come from a single thread; a frame arriving while the
    previous one is still being handled is dropped.
    """

    def __init__(self, source, store=None, notifier=None, limits=None,
                 frames_needed=config.CALIBRATION_FRAMES,
                 check_interval=config.CHECK_INTERVAL,
                 init_timeout=config.INIT_TIMEOUT,
                 init_attempts=config.INIT_ATTEMPTS,
                 init_backoff=config.INIT_BACKOFF,
                 executor=None, clock=time.monotonic):
        """
        Args:
            source: landmark source (configure/on_result/initialize/start/stop/close)
            store: persistence sink (save_baseline/append_posture_log), optional
            notifier: notification sink (notify/set_indicator), optional
            limits: ThresholdConfig for the classifier
            frames_needed: calibration sample count
            check_interval: 0 to classify every frame, else seconds between checks
            executor: optional concurrent.futures executor for sink calls
            clock: monotonic time source
        """
        self.source = source
        self.store = store
        self.notifier = notifier
        self.analyzer = PostureAnalyzer(limits)
        self.check_interval = check_interval
        self.init_timeout = init_timeout
        self.init_attempts = init_attempts
        self.init_backoff = init_backoff
        self.executor = executor
        self._clock = clock
        self.context = SessionContext(calibrator=ScaleCalibrator(frames_needed))
        self._state_listeners = []
        self._status_listeners = []
        self._processing = False

        self.source.on_result(self.handle_frame)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def state(self):
        return self.context.state

    @property
    def scale_factor(self):
        return self.context.scale_factor

    def add_state_listener(self, callback):
        """callback(old_state, new_state)"""
        self._state_listeners.append(callback)

    def add_status_listener(self, callback):
        """callback(PostureStatus)"""
        self._status_listeners.append(callback)

    def _transition(self, new_state):
        old_state = self.context.state
        if old_state == new_state:
            return
        self.context.state = new_state
        logger.info("Session %s -> %s", old_state.value, new_state.value)
        for callback in self._state_listeners:
            try:
                callback(old_state, new_state)
            except Exception:
                logger.exception("State listener failed")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self):
        """
        Bring up model + camera and begin automatic calibration.

        Raises:
            InitializationError: model/camera not ready; state stays SETUP
        """
        if self.state != SessionState.SETUP:
            logger.warning("Start ignored: session already %s", self.state.value)
            return False

        try:
            initialize_with_retry(self.source.initialize,
                                  attempts=self.init_attempts,
                                  backoff=self.init_backoff,
                                  timeout=self.init_timeout)
            self.source.start()
        except InitializationError:
            self._release_source()
            raise
        except Exception as e:
            self._release_source()
            raise InitializationError(f"Failed to start camera: {e}") from e

        self.context.reset_calibration()
        self.context.started_at = self._clock()
        self._transition(SessionState.CALIBRATING)
        logger.info("Calibrating: sit normally for %d frames",
                    self.context.calibrator.frames_needed)
        return True

    def pause(self):
        if self.state != SessionState.MONITORING:
            return False
        self._transition(SessionState.PAUSED)
        return True

    def resume(self):
        if self.state != SessionState.PAUSED:
            return False
        # countdown restarts from zero
        self.context.last_check = self._clock()
        self._transition(SessionState.MONITORING)
        return True

    def toggle_pause(self):
        if self.state == SessionState.MONITORING:
            return self.pause()
        return self.resume()

    def recalibrate(self):
        """Tear down camera/model and return to SETUP with calibration discarded"""
        try:
            self._release_source()
        finally:
            self.context.reset_calibration()
            self._transition(SessionState.SETUP)
        if self.notifier is not None:
            self._dispatch(self.notifier.set_indicator, None)

    def shutdown(self):
        self.recalibrate()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()
        return False

    def _release_source(self):
        """Stop the camera and close the model; failures are logged, not raised"""
        for step in (self.source.stop, self.source.close):
            try:
                step()
            except Exception:
                logger.exception("Landmark source %s failed",
                                 getattr(step, '__name__', step))

    # ------------------------------------------------------------------
    # Frame path
    # ------------------------------------------------------------------
    def handle_frame(self, frame):
        """
        Process one LandmarkFrame to completion.

        Returns:
            PostureStatus if the frame was classified, else None
        """
        if self._processing:
            logger.debug("Frame dropped: previous frame still processing")
            return None
        self._processing = True
        try:
            return self._route(frame)
        finally:
            self._processing = False

    def _route(self, frame):
        self.context.frames_received += 1
        if frame is None or not frame.landmarks:
            return None
        if self.state not in (SessionState.CALIBRATING, SessionState.MONITORING):
            return None

        try:
            features = extract_features(frame)
        except InsufficientLandmarksError as e:
            self.context.frames_skipped += 1
            logger.debug("Frame skipped: %s", e)
            return None

        if self.state == SessionState.CALIBRATING:
            self._calibrate(features)
            return None
        return self._monitor(features)

    def _calibrate(self, features):
        calibrator = self.context.calibrator
        if not calibrator.add_sample(features.shoulder_distance):
            return

        self.context.scale_factor = calibrator.scale_factor
        self.context.last_check = self._clock()
        logger.info("Calibration complete. scaleFactor: %.4f", calibrator.scale_factor)
        if self.store is not None:
            self._dispatch(self.store.save_baseline, {
                'scaleFactor': calibrator.scale_factor,
                'samples': len(calibrator.samples),
                'timestamp': int(features.timestamp * 1000),
            })
        self._transition(SessionState.MONITORING)

    def _monitor(self, features):
        if self.check_interval > 0:
            now = self._clock()
            if self.context.last_check is not None and \
                    now - self.context.last_check < self.check_interval:
                return None
            self.context.last_check = now

        result = self.analyzer.analyze(features, self.context.scale_factor)
        self.context.frames_analyzed += 1
        self.context.last_status = result
        self._publish(result)
        return result

    def _publish(self, result):
        if self.notifier is not None:
            self._dispatch(self.notifier.set_indicator, result.status)
            if result.should_notify:
                self._dispatch(self.notifier.notify, config.ALERT_TITLE,
                               f"{result.message}. Please adjust your posture.",
                               result.status)
        if self.store is not None:
            self._dispatch(self.store.append_posture_log, result.to_log_entry())

        for callback in self._status_listeners:
            try:
                callback(result)
            except Exception:
                logger.exception("Status listener failed")

    # ------------------------------------------------------------------
    # Sink dispatch (errors are logged, never raised into the frame loop)
    # ------------------------------------------------------------------
    def _dispatch(self, fn, *args):
        if self.executor is None:
            self._run_sink(fn, *args)
        else:
            self.executor.submit(self._run_sink, fn, *args)

    def _run_sink(self, fn, *args):
        try:
            return fn(*args)
        except PostureError as e:
            logger.warning("⚠️  %s", e)
        except Exception:
            logger.exception("Sink call %s failed", getattr(fn, '__name__', fn))
        return None

    def get_stats(self):
        ctx = self.context
        return {
            'state': ctx.state.value,
            'scale_factor': ctx.scale_factor,
            'calibration_progress': ctx.calibrator.progress,
            'frames_received': ctx.frames_received,
            'frames_analyzed': ctx.frames_analyzed,
            'frames_skipped': ctx.frames_skipped,
            'last_status': ctx.last_status.status if ctx.last_status else None,
        }
