"""
Geometric signal extraction.

Turns one LandmarkSet into the three ratios the gesture state machine gates
on. Point groups follow the 68-point face layout:

  eyes   6 points each, p0/p3 horizontal corners, p1/p2 upper lid,
         p4/p5 lower lid (p1 above p5, p2 above p4)
  nose   bridge-to-base, index 3 is the tip
  mouth  20-point ring, 12 outer lip points then 8 inner lip points
"""

import math
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

Point = Tuple[float, float]

EPSILON = 1e-6

EYE_POINTS = 6
MIN_NOSE_POINTS = 4
MOUTH_POINTS = 20

NOSE_TIP = 3
MOUTH_LEFT_CORNER = 0
MOUTH_RIGHT_CORNER = 6
MOUTH_INNER_TOP = 13
MOUTH_INNER_BOTTOM = 19

# head-turn references: outer corner of each eye
LEFT_EYE_REF = 0
RIGHT_EYE_REF = 3


def _as_points(name: str, points: Sequence[Sequence[float]]) -> Tuple[Point, ...]:
    out = []
    for p in points:
        if len(p) < 2:
            raise ValueError(f"{name}: point {p!r} needs x and y")
        out.append((float(p[0]), float(p[1])))
    return tuple(out)


@dataclass(frozen=True)
class LandmarkSet:
    left_eye: Tuple[Point, ...]
    right_eye: Tuple[Point, ...]
    nose: Tuple[Point, ...]
    mouth_contour: Tuple[Point, ...]

    def __post_init__(self):
        # normalise to tuples of float pairs so the set stays immutable
        object.__setattr__(self, "left_eye", _as_points("left_eye", self.left_eye))
        object.__setattr__(self, "right_eye", _as_points("right_eye", self.right_eye))
        object.__setattr__(self, "nose", _as_points("nose", self.nose))
        object.__setattr__(self, "mouth_contour", _as_points("mouth_contour", self.mouth_contour))

        if len(self.left_eye) != EYE_POINTS or len(self.right_eye) != EYE_POINTS:
            raise ValueError(f"each eye needs exactly {EYE_POINTS} points")
        if len(self.nose) < MIN_NOSE_POINTS:
            raise ValueError(f"nose needs at least {MIN_NOSE_POINTS} points")
        if len(self.mouth_contour) != MOUTH_POINTS:
            raise ValueError(f"mouth contour needs exactly {MOUTH_POINTS} points")


@dataclass(frozen=True)
class GestureSignals:
    ear_left: float
    ear_right: float
    ear_avg: float
    mouth_open_ratio: float
    head_turn_ratio: float


# --------------------------------------------------

def _dist(a: Point, b: Point) -> float:
    return float(np.hypot(a[0] - b[0], a[1] - b[1]))


def _safe_ratio(num: float, den: float) -> Optional[float]:
    if not math.isfinite(num) or not math.isfinite(den) or den < EPSILON:
        return None
    return num / den


def eye_aspect_ratio(eye: Sequence[Point]) -> Optional[float]:
    """EAR = (|p1-p5| + |p2-p4|) / (2 * |p0-p3|), None on a collapsed eye."""
    vertical = _dist(eye[1], eye[5]) + _dist(eye[2], eye[4])
    horizontal = _dist(eye[0], eye[3])
    return _safe_ratio(vertical, 2.0 * horizontal)


def mouth_open_ratio(mouth: Sequence[Point]) -> Optional[float]:
    opening = _dist(mouth[MOUTH_INNER_TOP], mouth[MOUTH_INNER_BOTTOM])
    width = _dist(mouth[MOUTH_LEFT_CORNER], mouth[MOUTH_RIGHT_CORNER])
    return _safe_ratio(opening, width)


def head_turn_ratio(landmarks: LandmarkSet) -> Optional[float]:
    """Signed nose offset from the eye midpoint, in face widths.

    Negative when the nose tip sits left of centre in image coordinates.
    """
    left_ref = landmarks.left_eye[LEFT_EYE_REF]
    right_ref = landmarks.right_eye[RIGHT_EYE_REF]
    face_width = _dist(left_ref, right_ref)
    face_center_x = (left_ref[0] + right_ref[0]) / 2
    nose_x = landmarks.nose[NOSE_TIP][0]
    return _safe_ratio(nose_x - face_center_x, face_width)


def extract(landmarks: LandmarkSet) -> Optional[GestureSignals]:
    """Compute gesture signals for one tick.

    Returns None (no signal) when any reference distance is degenerate;
    callers treat that exactly like "no face found".
    """
    ear_left = eye_aspect_ratio(landmarks.left_eye)
    ear_right = eye_aspect_ratio(landmarks.right_eye)
    mouth = mouth_open_ratio(landmarks.mouth_contour)
    turn = head_turn_ratio(landmarks)

    if ear_left is None or ear_right is None or mouth is None or turn is None:
        return None

    return GestureSignals(
        ear_left=ear_left,
        ear_right=ear_right,
        ear_avg=(ear_left + ear_right) / 2.0,
        mouth_open_ratio=mouth,
        head_turn_ratio=turn,
    )
