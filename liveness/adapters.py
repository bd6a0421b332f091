"""
Bridges between a Session and the outside world.

- FrameBuffer: latest decoded camera frame for one client
- MediaPipeLandmarkDetector: FaceMesh -> LandmarkSet
- SocketIOObserver: session events -> Socket.IO messages for one client
"""

import asyncio
import logging
import threading

import cv2
import numpy as np

from liveness.errors import InitializationError
from liveness.events import Completed, SessionObserver
from liveness.signals import LandmarkSet

logger = logging.getLogger(__name__)

# FaceMesh indices laid out in the 68-point order the signal extractor expects.
# eyes: outer/inner corner at 0 and 3, upper lid at 1-2, lower lid at 4-5
LEFT_EYE_IDX = [33, 160, 158, 133, 153, 144]
RIGHT_EYE_IDX = [362, 385, 387, 263, 373, 380]
# bridge down to the tip (index 3 -> 1), then the base of the nose
NOSE_IDX = [168, 6, 197, 1, 98, 97, 2, 326, 327]
# 12 outer lip points from the left corner clockwise, then 8 inner lip points
MOUTH_IDX = [
    61, 39, 37, 0, 267, 269, 291, 405, 314, 17, 84, 181,
    78, 82, 13, 312, 308, 317, 14, 87,
]


class FrameBuffer:
    """Holds the most recent frame pushed by the client. Older frames are dropped."""

    def __init__(self):
        self._lock = threading.Lock()
        self._frame = None
        self.frames_seen = 0

    def push(self, frame):
        with self._lock:
            self._frame = frame
            self.frames_seen += 1

    def latest(self):
        with self._lock:
            return self._frame


def decode_jpeg_to_bgr(jpeg_bytes: bytes, mirror: bool = False):
    if isinstance(jpeg_bytes, bytearray):
        jpeg_bytes = bytes(jpeg_bytes)
    arr = np.frombuffer(jpeg_bytes, dtype=np.uint8)
    if arr.size == 0:
        return None
    frame = cv2.imdecode(arr, cv2.IMREAD_COLOR)
    if frame is not None and mirror:
        frame = cv2.flip(frame, 1)
    return frame


def landmark_set_from_face_mesh(landmarks, width: int, height: int) -> LandmarkSet:
    """Map normalised FaceMesh landmarks onto a pixel-space LandmarkSet.

    Scaling by the frame size keeps the ratios free of aspect distortion.
    """
    def pick(indices):
        return [(landmarks[i].x * width, landmarks[i].y * height) for i in indices]

    return LandmarkSet(
        left_eye=pick(LEFT_EYE_IDX),
        right_eye=pick(RIGHT_EYE_IDX),
        nose=pick(NOSE_IDX),
        mouth_contour=pick(MOUTH_IDX),
    )


class MediaPipeLandmarkDetector:
    """Loads FaceMesh once per detector and runs it off the event loop."""

    def __init__(self, min_detection_confidence=0.6, min_tracking_confidence=0.5):
        self.min_detection_confidence = min_detection_confidence
        self.min_tracking_confidence = min_tracking_confidence
        self._face_mesh = None
        # FaceMesh graphs are not re-entrant
        self._process_lock = threading.Lock()
        # created on first load, inside the loop that runs the sessions
        self._load_lock = None

    @property
    def loaded(self) -> bool:
        return self._face_mesh is not None

    def _create_face_mesh(self):
        import mediapipe as mp

        return mp.solutions.face_mesh.FaceMesh(
            static_image_mode=False,
            max_num_faces=1,
            refine_landmarks=True,
            min_detection_confidence=self.min_detection_confidence,
            min_tracking_confidence=self.min_tracking_confidence,
        )

    async def load(self):
        if self._face_mesh is not None:
            return
        if self._load_lock is None:
            self._load_lock = asyncio.Lock()
        # sessions share one detector; only the first of them builds the graph
        async with self._load_lock:
            if self._face_mesh is not None:
                return
            try:
                self._face_mesh = await asyncio.to_thread(self._create_face_mesh)
            except Exception as e:
                raise InitializationError(f"could not load MediaPipe FaceMesh: {e}") from e
        logger.info("MediaPipe FaceMesh loaded")

    async def detect(self, frame_source):
        if self._face_mesh is None:
            raise InitializationError("FaceMesh used before load()")
        frame = frame_source.latest()
        if frame is None:
            return None
        return await asyncio.to_thread(self._detect_sync, frame)

    def _detect_sync(self, frame):
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        height, width = frame.shape[:2]
        with self._process_lock:
            res = self._face_mesh.process(rgb)
        if not res.multi_face_landmarks:
            return None
        return landmark_set_from_face_mesh(res.multi_face_landmarks[0].landmark, width, height)

    def close(self):
        if self._face_mesh is not None:
            self._face_mesh.close()
            self._face_mesh = None


class SocketIOObserver(SessionObserver):
    """Forwards session events to one Socket.IO client.

    server_update carries status text and progress, narration carries the
    spoken prompt for the browser to read out.
    """

    def __init__(self, socketio, sid):
        self.socketio = socketio
        self.sid = sid
        self.progress = 0

    def _update(self, **payload):
        payload.setdefault("status", "IN_PROGRESS")
        payload.setdefault("progress", self.progress)
        self.socketio.emit("server_update", payload, to=self.sid)

    def on_status(self, text):
        self._update(instruction=text)

    def on_progress(self, percent, status):
        self.progress = percent
        self._update(instruction=status)

    def on_narration(self, prompt):
        self.socketio.emit("narration", {"prompt": prompt}, to=self.sid)

    def on_completed(self, outcome: Completed):
        if outcome.success:
            self._update(status="PASSED", instruction="Liveness check passed")
        else:
            self._update(
                status="FAILED",
                instruction="Liveness check failed. Please try again.",
                reason=outcome.reason,
            )
