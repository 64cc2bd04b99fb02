# Configuration settings for posture monitoring application

import os

# Camera
CAMERA_INDEX = 0
CAMERA_WIDTH = 640
CAMERA_HEIGHT = 480
MIN_FPS = 8

# MediaPipe (Tasks API pose landmarker)
MODEL_VARIANT = "lite"  # lite / full / heavy
MODEL_URL = (
    "https://storage.googleapis.com/mediapipe-models/pose_landmarker/"
    f"pose_landmarker_{MODEL_VARIANT}/float16/1/pose_landmarker_{MODEL_VARIANT}.task"
)
DETECTION_CONFIDENCE = 0.5
TRACKING_CONFIDENCE = 0.5

# Model initialization
INIT_ATTEMPTS = 3
INIT_BACKOFF = 2.0  # seconds between attempts
INIT_TIMEOUT = 30.0  # seconds for the whole handshake
MODEL_DOWNLOAD_TIMEOUT = 20.0  # socket timeout for the model download

# Calibration
CALIBRATION_FRAMES = 60  # ~2s at 30fps
MIN_SHOULDER_DISTANCE = 1e-6

# Posture limits (units after scaling)
HEAD_FORWARD_LIMIT = 0.25  # horizontal ratio
NECK_TILT_LIMIT = 0.10  # slope
SHOULDER_SLOPE_LIMIT = 0.15  # uneven shoulders
ESCALATION_FACTOR = 1.5  # beyond limit * factor = BAD
MAX_SLOPE = 1000.0

# Monitoring
CHECK_INTERVAL = 0  # 0 = every frame, otherwise seconds between checks

# Alerts
ALERT_TITLE = "Posture Alert"
ALERT_COOLDOWN = 30  # seconds between desktop notifications

# Logging
LOG_LEVEL = os.getenv("POSTURE_LOG_LEVEL", "INFO")
LOG_RETENTION = 1000  # posture log entries kept on disk
RECORD_EVERY = 5  # write the posture log to disk at most every 5 seconds

# Display colors (BGR format)
COLOR_GOOD = (0, 255, 0)  # Green
COLOR_BAD = (0, 0, 255)  # Red
COLOR_IDLE = (128, 128, 128)  # Gray
COLOR_TEXT = (255, 255, 255)  # White

# File paths and directories
DATA_DIR = os.getenv("POSTURE_DATA_DIR", "data")
MODEL_PATH = os.path.join(DATA_DIR, "models", f"pose_landmarker_{MODEL_VARIANT}.task")
