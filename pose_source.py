# pose_source.py - Camera + MediaPipe pose landmarker (the landmark source)

import logging
import os
import shutil
import threading
import time
import urllib.request

import cv2
import mediapipe as mp

import configure_setting as config
from posture_core import (InitializationError, Landmark, LandmarkFrame,
                          LEFT_EAR, RIGHT_EAR, LEFT_SHOULDER, RIGHT_SHOULDER, NOSE)

logger = logging.getLogger(__name__)

# Upper-body skeleton drawn on the preview (pairs of landmark indices)
UPPER_BODY_CONNECTIONS = [
    (LEFT_EAR, NOSE), (NOSE, RIGHT_EAR),
    (LEFT_SHOULDER, RIGHT_SHOULDER),
    (LEFT_SHOULDER, 13), (13, 15),
    (RIGHT_SHOULDER, 14), (14, 16),
    (LEFT_SHOULDER, 23), (RIGHT_SHOULDER, 24), (23, 24),
]


def ensure_model(model_path=config.MODEL_PATH, url=config.MODEL_URL,
                 timeout=config.MODEL_DOWNLOAD_TIMEOUT):
    """
    Make sure the pose landmarker .task file exists, downloading it if needed.

    Args:
        timeout: socket timeout (seconds) for the download

    Returns:
        str: path to the model file

    Raises:
        InitializationError: download failed or stalled
    """
    if os.path.exists(model_path) and os.path.getsize(model_path) > 1024:
        return model_path

    os.makedirs(os.path.dirname(model_path) or ".", exist_ok=True)
    logger.info("Downloading pose landmarker model to %s", model_path)
    tmp_path = model_path + ".tmp"
    try:
        with urllib.request.urlopen(url, timeout=timeout) as response, \
                open(tmp_path, "wb") as handle:
            shutil.copyfileobj(response, handle)
        os.replace(tmp_path, model_path)
    except OSError as e:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise InitializationError(f"Model download failed: {e}") from e
    return model_path


class LandmarkSource:
    """
    Webcam + pose landmarker.

    Lifecycle: configure() -> initialize() -> start() -> poll()... -> stop() -> close().
    Every poll() processes one camera frame to completion and hands the
    resulting LandmarkFrame to the on_result callbacks.
    """

    def __init__(self, camera_index=config.CAMERA_INDEX, model_path=config.MODEL_PATH):
        self.options = {
            'camera_index': camera_index,
            'model_path': model_path,
            'width': config.CAMERA_WIDTH,
            'height': config.CAMERA_HEIGHT,
            'min_detection_confidence': config.DETECTION_CONFIDENCE,
            'min_tracking_confidence': config.TRACKING_CONFIDENCE,
        }
        self._callbacks = []
        self._landmarker = None
        self._cap = None
        self._last_timestamp_ms = 0
        self._lock = threading.Lock()
        self._generation = 0

    def configure(self, **options):
        unknown = set(options) - set(self.options)
        if unknown:
            raise ValueError(f"Unknown options: {sorted(unknown)}")
        self.options.update(options)

    def on_result(self, callback):
        self._callbacks.append(callback)

    @property
    def is_ready(self):
        return self._landmarker is not None

    @property
    def is_running(self):
        return self._cap is not None

    def initialize(self):
        """
        Create the pose landmarker (blocking; may download the model).

        A landmarker that finishes building after close() was called
        belongs to an abandoned attempt and is closed straight away.
        """
        with self._lock:
            if self._landmarker is not None:
                return
            generation = self._generation

        model_path = ensure_model(self.options['model_path'])
        landmarker = self._create_landmarker(model_path)

        with self._lock:
            if generation == self._generation and self._landmarker is None:
                self._landmarker = landmarker
                landmarker = None
        if landmarker is not None:
            landmarker.close()
            raise InitializationError("Initialization abandoned; landmarker discarded")
        logger.info("Pose landmarker ready (%s)", model_path)

    def _create_landmarker(self, model_path):
        vision = mp.tasks.vision
        options = vision.PoseLandmarkerOptions(
            base_options=mp.tasks.BaseOptions(model_asset_path=model_path),
            running_mode=vision.RunningMode.VIDEO,
            num_poses=1,
            min_pose_detection_confidence=self.options['min_detection_confidence'],
            min_tracking_confidence=self.options['min_tracking_confidence'],
        )
        return vision.PoseLandmarker.create_from_options(options)

    def start(self):
        """
        Open the camera and check it delivers frames.

        Raises:
            InitializationError: camera unavailable
        """
        if self._cap is not None:
            return
        cap = cv2.VideoCapture(self.options['camera_index'])
        if not cap.isOpened():
            cap.release()
            raise InitializationError(
                f"Cannot access camera {self.options['camera_index']}")

        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.options['width'])
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.options['height'])

        ret, _ = cap.read()
        if not ret:
            cap.release()
            raise InitializationError("Camera opened but cannot read frames")

        self._cap = cap
        logger.info("Camera ready: %dx%d",
                    int(cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
                    int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT)))

    def stop(self):
        if self._cap is not None:
            self._cap.release()
            self._cap = None
            logger.info("Camera released")

    def close(self):
        self.stop()
        with self._lock:
            # any initialize() still in flight is now stale
            self._generation += 1
            landmarker, self._landmarker = self._landmarker, None
        if landmarker is not None:
            landmarker.close()
            logger.info("Pose landmarker closed")

    def detect(self, image):
        """
        Run the landmarker on a BGR image.

        Returns:
            LandmarkFrame (landmarks None if no person detected)
        """
        now = time.time()
        # VIDEO mode needs strictly increasing timestamps
        timestamp_ms = max(int(now * 1000), self._last_timestamp_ms + 1)
        self._last_timestamp_ms = timestamp_ms

        rgb = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
        mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb)
        result = self._landmarker.detect_for_video(mp_image, timestamp_ms)

        if not result.pose_landmarks:
            return LandmarkFrame(landmarks=None, timestamp=now)

        landmarks = [
            Landmark(x=lm.x, y=lm.y, z=lm.z, visibility=getattr(lm, 'visibility', None))
            for lm in result.pose_landmarks[0]
        ]
        return LandmarkFrame(landmarks=landmarks, timestamp=now)

    def poll(self):
        """
        Read and process one camera frame.

        Returns:
            tuple: (image, LandmarkFrame), or (None, None) if the camera
            is stopped or the read failed
        """
        if self._cap is None or self._landmarker is None:
            return None, None

        ret, image = self._cap.read()
        if not ret:
            logger.warning("Failed to grab frame")
            return None, None

        frame = self.detect(image)
        for callback in self._callbacks:
            callback(frame)
        return image, frame

    def draw_skeleton(self, image, frame):
        """Draw the upper-body skeleton of a LandmarkFrame onto image"""
        if frame is None or not frame.has_landmarks:
            return
        h, w = image.shape[:2]
        points = [(int(lm.x * w), int(lm.y * h)) for lm in frame.landmarks]

        for a, b in UPPER_BODY_CONNECTIONS:
            if a < len(points) and b < len(points):
                cv2.line(image, points[a], points[b], (0, 255, 0), 2)
        for a, b in UPPER_BODY_CONNECTIONS:
            for index in (a, b):
                if index < len(points):
                    cv2.circle(image, points[index], 3, (0, 0, 255), -1)
