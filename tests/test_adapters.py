"""
Adapter tests: FaceMesh mapping, frame buffering/decoding, the MediaPipe
detector's error mapping and the Socket.IO observer.

MediaPipe itself is never loaded; FaceMesh is replaced by small fakes.
"""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import asyncio
import unittest
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import cv2
import numpy as np

from liveness.adapters import (
    LEFT_EYE_IDX,
    MOUTH_IDX,
    NOSE_IDX,
    RIGHT_EYE_IDX,
    FrameBuffer,
    MediaPipeLandmarkDetector,
    SocketIOObserver,
    decode_jpeg_to_bgr,
    landmark_set_from_face_mesh,
)
from liveness.errors import InitializationError
from liveness.events import Completed, NarrationRequested, ProgressChanged, StatusChanged
from liveness.signals import MOUTH_INNER_BOTTOM, MOUTH_INNER_TOP, NOSE_TIP, extract


def fake_face_mesh_landmarks(count=478):
    # distinct normalised coordinates per index
    return [SimpleNamespace(x=(i % 100) / 100.0, y=(i // 100) / 10.0, z=0.0) for i in range(count)]


class TestFaceMeshMapping(unittest.TestCase):

    def test_groups_follow_index_tables(self):
        lm = fake_face_mesh_landmarks()
        out = landmark_set_from_face_mesh(lm, width=640, height=480)
        self.assertEqual(len(out.left_eye), 6)
        self.assertEqual(len(out.right_eye), 6)
        self.assertEqual(len(out.nose), len(NOSE_IDX))
        self.assertEqual(len(out.mouth_contour), 20)

        i = LEFT_EYE_IDX[2]
        self.assertAlmostEqual(out.left_eye[2][0], lm[i].x * 640)
        self.assertAlmostEqual(out.left_eye[2][1], lm[i].y * 480)
        self.assertAlmostEqual(out.right_eye[0][0], lm[RIGHT_EYE_IDX[0]].x * 640)

    def test_documented_points(self):
        # nose tip is FaceMesh 1, inner lips straddle the centre line
        self.assertEqual(NOSE_IDX[NOSE_TIP], 1)
        self.assertEqual(MOUTH_IDX[0], 61)
        self.assertEqual(MOUTH_IDX[6], 291)
        self.assertEqual(MOUTH_IDX[MOUTH_INNER_TOP], 82)
        self.assertEqual(MOUTH_IDX[MOUTH_INNER_BOTTOM], 87)
        self.assertEqual(LEFT_EYE_IDX[0], 33)
        self.assertEqual(RIGHT_EYE_IDX[3], 263)

    def test_all_zero_landmarks_give_no_signal(self):
        lm = [SimpleNamespace(x=0.0, y=0.0, z=0.0) for _ in range(478)]
        self.assertIsNone(extract(landmark_set_from_face_mesh(lm, 640, 480)))


class TestFrames(unittest.TestCase):

    def test_frame_buffer_keeps_latest(self):
        buf = FrameBuffer()
        self.assertIsNone(buf.latest())
        buf.push("a")
        buf.push("b")
        self.assertEqual(buf.latest(), "b")
        self.assertEqual(buf.frames_seen, 2)

    def test_decode_and_mirror(self):
        img = np.zeros((8, 16, 3), dtype=np.uint8)
        img[:, :8] = 255
        ok, jpeg = cv2.imencode(".png", img)
        self.assertTrue(ok)

        plain = decode_jpeg_to_bgr(jpeg.tobytes())
        mirrored = decode_jpeg_to_bgr(bytearray(jpeg.tobytes()), mirror=True)
        self.assertEqual(plain.shape, (8, 16, 3))
        self.assertEqual(int(plain[0, 0, 0]), 255)
        self.assertEqual(int(mirrored[0, 0, 0]), 0)
        self.assertEqual(int(mirrored[0, 15, 0]), 255)

    def test_decode_garbage(self):
        self.assertIsNone(decode_jpeg_to_bgr(b""))
        self.assertIsNone(decode_jpeg_to_bgr(b"not an image"))


class FakeFaceMesh:
    def __init__(self, faces=None):
        self.faces = faces
        self.closed = False

    def process(self, rgb):
        return SimpleNamespace(multi_face_landmarks=self.faces)

    def close(self):
        self.closed = True


class TestMediaPipeDetector(unittest.IsolatedAsyncioTestCase):

    async def test_load_failure_becomes_initialization_error(self):
        detector = MediaPipeLandmarkDetector()
        with patch.object(detector, "_create_face_mesh", side_effect=RuntimeError("no graph")):
            with self.assertRaises(InitializationError):
                await detector.load()
        self.assertFalse(detector.loaded)

    async def test_detect_before_load(self):
        with self.assertRaises(InitializationError):
            await MediaPipeLandmarkDetector().detect(FrameBuffer())

    async def test_detect_without_frame(self):
        detector = MediaPipeLandmarkDetector()
        with patch.object(detector, "_create_face_mesh", return_value=FakeFaceMesh()):
            await detector.load()
        self.assertIsNone(await detector.detect(FrameBuffer()))

    async def test_detect_no_face_and_face(self):
        frames = FrameBuffer()
        frames.push(np.zeros((480, 640, 3), dtype=np.uint8))

        detector = MediaPipeLandmarkDetector()
        mesh = FakeFaceMesh()
        with patch.object(detector, "_create_face_mesh", return_value=mesh):
            await detector.load()
            await detector.load()
        self.assertIsNone(await detector.detect(frames))

        mesh.faces = [SimpleNamespace(landmark=fake_face_mesh_landmarks())]
        result = await detector.detect(frames)
        self.assertEqual(len(result.mouth_contour), 20)

        detector.close()
        self.assertTrue(mesh.closed)
        self.assertFalse(detector.loaded)

    async def test_concurrent_loads_build_one_face_mesh(self):
        """Sessions loading the shared detector at the same time get one graph between them."""
        detector = MediaPipeLandmarkDetector()
        factory = MagicMock(side_effect=lambda: FakeFaceMesh())
        with patch.object(detector, "_create_face_mesh", factory):
            await asyncio.gather(detector.load(), detector.load(), detector.load())
        self.assertEqual(factory.call_count, 1)
        self.assertTrue(detector.loaded)


class TestSocketIOObserver(unittest.TestCase):

    def setUp(self):
        self.socketio = MagicMock()
        self.observer = SocketIOObserver(self.socketio, "sid-1")

    def last_emit(self):
        args, kwargs = self.socketio.emit.call_args
        self.assertEqual(kwargs["to"], "sid-1")
        return args

    def test_status_and_progress(self):
        self.observer.on_event(ProgressChanged(40, "loading"))
        self.observer.on_event(StatusChanged("blink detected"))
        event, payload = self.last_emit()
        self.assertEqual(event, "server_update")
        self.assertEqual(payload, {"status": "IN_PROGRESS", "progress": 40, "instruction": "blink detected"})

    def test_narration(self):
        self.observer.on_event(NarrationRequested("please blink"))
        self.assertEqual(self.last_emit(), ("narration", {"prompt": "please blink"}))

    def test_completion(self):
        self.observer.on_event(Completed(False, "timeout"))
        event, payload = self.last_emit()
        self.assertEqual(payload["status"], "FAILED")
        self.assertEqual(payload["reason"], "timeout")

        self.observer.on_event(Completed(True))
        self.assertEqual(self.last_emit()[1]["status"], "PASSED")


if __name__ == "__main__":
    unittest.main()
