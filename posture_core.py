# posture_core.py - Feature extraction + Calibration + Classification (The ML Brain)

import math
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

import configure_setting as config

# Posture levels, ordered by severity
GOOD = "good"
WARNING = "warning"
BAD = "bad"
SEVERITY = {GOOD: 0, WARNING: 1, BAD: 2}

# MediaPipe 33-point body model indices
NOSE = 0
LEFT_EYE = 2
RIGHT_EYE = 5
LEFT_EAR = 7
RIGHT_EAR = 8
LEFT_SHOULDER = 11
RIGHT_SHOULDER = 12
REQUIRED_LANDMARKS = (NOSE, LEFT_EYE, RIGHT_EYE, LEFT_EAR, RIGHT_EAR,
                      LEFT_SHOULDER, RIGHT_SHOULDER)


# ============================================================================
# ERRORS
# ============================================================================
class PostureError(Exception):
    """Base class for posture monitor errors"""


class InitializationError(PostureError):
    """Camera or pose model did not become ready"""


class InsufficientLandmarksError(PostureError):
    """Frame lacks the keypoints needed for feature extraction"""


class PersistenceError(PostureError):
    """Baseline or posture log could not be read/written"""


class NotificationError(PostureError):
    """Desktop notification could not be shown"""


class CalibrationIncompleteError(PostureError):
    """Classification attempted before a scale factor exists"""


# ============================================================================
# DATA TYPES
# ============================================================================
@dataclass(frozen=True)
class Landmark:
    """A single normalized body keypoint (x/y in 0-1 image coordinates)"""

    x: float
    y: float
    z: float = 0.0
    visibility: Optional[float] = None


@dataclass(frozen=True)
class LandmarkFrame:
    """
    Landmarks for one processed video frame.

    landmarks is None (or empty) when no person was detected.
    """

    landmarks: Optional[List[Landmark]]
    timestamp: float = 0.0

    @property
    def has_landmarks(self):
        return bool(self.landmarks)


@dataclass(frozen=True)
class HeadForward:
    forward: float
    vertical: float
    nose_angle: float


@dataclass(frozen=True)
class FeatureRecord:
    """Compact per-frame posture features"""

    shoulder_slope: float
    neck_tilt: float
    head_forward: HeadForward
    shoulder_distance: float
    timestamp: float

    def to_dict(self):
        """JSON shape used for the posture log 'measurements' field"""
        return {
            'shoulderSlope': self.shoulder_slope,
            'neckTilt': self.neck_tilt,
            'headForward': {
                'forward': self.head_forward.forward,
                'vertical': self.head_forward.vertical,
                'noseAngle': self.head_forward.nose_angle,
            },
            'shoulderDistance': self.shoulder_distance,
            'timestamp': self.timestamp,
        }


@dataclass(frozen=True)
class ThresholdConfig:
    head_forward: float = config.HEAD_FORWARD_LIMIT
    neck_tilt: float = config.NECK_TILT_LIMIT
    shoulder_slope: float = config.SHOULDER_SLOPE_LIMIT
    escalation_factor: float = config.ESCALATION_FACTOR


@dataclass(frozen=True)
class PostureStatus:
    """Result of classifying one frame"""

    status: str
    message: str
    measurements: FeatureRecord
    metrics: dict = field(default_factory=dict)

    @property
    def should_notify(self):
        return self.status != GOOD

    def limit_percentages(self, limits=None):
        """
        Express each live metric as a percentage of its limit.

        Returns:
            dict: {'normForward': 160.0, ...}, each capped at 999
        """
        limits = limits or ThresholdConfig()
        limit_for = {
            'normForward': limits.head_forward,
            'neckTiltAbs': limits.neck_tilt,
            'shoulderSlopeAbs': limits.shoulder_slope,
        }
        return {
            key: min(value / limit_for[key] * 100, 999)
            for key, value in self.metrics.items()
            if key in limit_for
        }

    def to_log_entry(self):
        return {
            'timestamp': int(self.measurements.timestamp * 1000),
            'status': self.status,
            'message': self.message,
            'measurements': self.measurements.to_dict(),
        }


# ============================================================================
# GEOMETRY HELPERS
# ============================================================================
def calculate_slope(p1, p2, max_slope=config.MAX_SLOPE):
    """
    Signed slope dy/dx from p1 to p2.

    Vertical pairs (same x) are clamped to +/-max_slope instead of
    producing inf; coincident points give 0.0.
    """
    dx = p2.x - p1.x
    dy = p2.y - p1.y
    if dx == 0:
        if dy == 0:
            return 0.0
        return math.copysign(max_slope, dy)
    slope = dy / dx
    return max(-max_slope, min(max_slope, slope))


def _midpoint(p1, p2):
    return Landmark(
        x=(p1.x + p2.x) / 2,
        y=(p1.y + p2.y) / 2,
        z=(p1.z + p2.z) / 2,
    )


def _required(landmarks, index):
    if index >= len(landmarks) or landmarks[index] is None:
        raise InsufficientLandmarksError(f"landmark {index} missing")
    point = landmarks[index]
    if not all(math.isfinite(v) for v in (point.x, point.y, point.z)):
        raise InsufficientLandmarksError(f"landmark {index} is not finite")
    return point


# ============================================================================
# LANDMARK EXTRACTOR
# ============================================================================
def extract_features(frame):
    """
    Convert a LandmarkFrame into a FeatureRecord.

    Args:
        frame: LandmarkFrame with the 33-point body model

    Returns:
        FeatureRecord

    Raises:
        InsufficientLandmarksError: required keypoints absent
    """
    landmarks = frame.landmarks
    if not landmarks:
        raise InsufficientLandmarksError("no landmarks in frame")

    points = {index: _required(landmarks, index) for index in REQUIRED_LANDMARKS}
    nose = points[NOSE]
    left_ear, right_ear = points[LEFT_EAR], points[RIGHT_EAR]
    left_shoulder, right_shoulder = points[LEFT_SHOULDER], points[RIGHT_SHOULDER]

    neck = _midpoint(left_shoulder, right_shoulder)
    ear_mid = _midpoint(left_ear, right_ear)

    nose_angle = math.degrees(math.atan2(nose.y - neck.y, nose.x - neck.x))

    return FeatureRecord(
        shoulder_slope=calculate_slope(left_shoulder, right_shoulder),
        neck_tilt=calculate_slope(left_ear, right_ear),
        head_forward=HeadForward(
            forward=abs(ear_mid.x - neck.x),
            vertical=ear_mid.y - neck.y,
            nose_angle=nose_angle,
        ),
        shoulder_distance=abs(left_shoulder.x - right_shoulder.x),
        timestamp=frame.timestamp,
    )


# ============================================================================
# CALIBRATION
# ============================================================================
class ScaleCalibrator:
    """
    Learns the user's scale from shoulder width while they sit normally.

    Collects `frames_needed` shoulder-distance samples; the scale factor is
    their mean.
    """

    def __init__(self, frames_needed=config.CALIBRATION_FRAMES,
                 min_distance=config.MIN_SHOULDER_DISTANCE):
        if frames_needed < 1:
            raise ValueError("frames_needed must be at least 1")
        self.frames_needed = frames_needed
        self.min_distance = min_distance
        self.samples = []
        self.scale_factor = None

    def reset(self):
        self.samples = []
        self.scale_factor = None

    @property
    def is_complete(self):
        return self.scale_factor is not None

    @property
    def progress(self):
        return min(len(self.samples) / self.frames_needed, 1.0)

    def add_sample(self, shoulder_distance):
        """
        Add one shoulder-distance sample.

        Returns:
            bool: True if this sample completed calibration
        """
        if self.is_complete:
            return False
        if not math.isfinite(shoulder_distance) or shoulder_distance <= self.min_distance:
            return False

        self.samples.append(shoulder_distance)
        if len(self.samples) >= self.frames_needed:
            self.scale_factor = float(np.mean(self.samples))
            return True
        return False


# ============================================================================
# POSTURE ANALYZER (Classifies features against limits)
# ============================================================================
class PostureAnalyzer:
    """Classifies posture from scale-normalized features"""

    def __init__(self, limits=None):
        self.limits = limits or ThresholdConfig()

    def _level(self, value, limit):
        if value > limit * self.limits.escalation_factor:
            return BAD
        if value > limit:
            return WARNING
        return GOOD

    def analyze(self, features, scale_factor):
        """
        Classify one FeatureRecord.

        Args:
            features: FeatureRecord from extract_features()
            scale_factor: mean shoulder distance from calibration

        Returns:
            PostureStatus
        """
        if not scale_factor or scale_factor <= 0:
            raise CalibrationIncompleteError("scale factor not calibrated")

        metrics = {
            'normForward': features.head_forward.forward / scale_factor,
            'neckTiltAbs': abs(features.neck_tilt),
            'shoulderSlopeAbs': abs(features.shoulder_slope),
        }
        checks = (
            ('normForward', self.limits.head_forward, "Forward Head"),
            ('neckTiltAbs', self.limits.neck_tilt, "Head Tilt"),
            ('shoulderSlopeAbs', self.limits.shoulder_slope, "Uneven Shoulders"),
        )

        status = GOOD
        labels = []
        for key, limit, label in checks:
            level = self._level(metrics[key], limit)
            if level == GOOD:
                continue
            labels.append(label)
            # escalate only
            if SEVERITY[level] > SEVERITY[status]:
                status = level

        message = " & ".join(labels) if labels else "Good Posture"
        return PostureStatus(status=status, message=message,
                             measurements=features, metrics=metrics)
