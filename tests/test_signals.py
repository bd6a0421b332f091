"""
Signal extractor tests.

Checks the EAR, mouth-opening and head-turn formulas against synthetic
landmarks with known geometry, and the no-signal policy for degenerate faces.
"""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import dataclasses
import math
import unittest

from liveness.signals import (
    LandmarkSet,
    eye_aspect_ratio,
    extract,
    head_turn_ratio,
    mouth_open_ratio,
)
from tests.fixtures import synthetic_landmarks as synth


class TestEyeAspectRatio(unittest.TestCase):

    def test_canonical_formula(self):
        """(|p1-p5| + |p2-p4|) / (2 * |p0-p3|)"""
        eye = [(0, 0), (1, -1), (3, -2), (4, 0), (3, 2), (1, 1)]
        # |p1-p5| = 2, |p2-p4| = 4, |p0-p3| = 4
        self.assertAlmostEqual(eye_aspect_ratio(eye), 6 / 8)

    def test_open_and_closed_eyes(self):
        self.assertAlmostEqual(extract(synth.neutral()).ear_avg, synth.OPEN_EAR)
        self.assertAlmostEqual(extract(synth.blinking()).ear_avg, synth.CLOSED_EAR)

    def test_average_of_both_eyes(self):
        signals = extract(synth.make_landmarks(ear=0.2, ear_right=0.4))
        self.assertAlmostEqual(signals.ear_left, 0.2)
        self.assertAlmostEqual(signals.ear_right, 0.4)
        self.assertAlmostEqual(signals.ear_avg, 0.3)


class TestMouthAndHead(unittest.TestCase):

    def test_mouth_open_ratio(self):
        self.assertAlmostEqual(mouth_open_ratio(synth.mouth_open().mouth_contour), synth.OPEN_MOUTH)
        self.assertAlmostEqual(extract(synth.neutral()).mouth_open_ratio, synth.CLOSED_MOUTH)

    def test_head_turn_is_signed(self):
        self.assertAlmostEqual(head_turn_ratio(synth.head_turned(1.0)), 0.5)
        self.assertAlmostEqual(head_turn_ratio(synth.head_turned(-1.0)), -0.5)
        self.assertAlmostEqual(extract(synth.neutral()).head_turn_ratio, 0.0)


class TestDegenerateGeometry(unittest.TestCase):
    """A zero denominator yields no signal, never NaN or infinity."""

    def test_collapsed_eye(self):
        self.assertIsNone(extract(synth.collapsed_eye()))

    def test_collapsed_mouth(self):
        self.assertIsNone(extract(synth.collapsed_mouth()))

    def test_zero_face_width(self):
        self.assertIsNone(extract(synth.zero_face_width()))

    def test_nan_coordinates(self):
        lm = synth.neutral()
        eye = list(lm.left_eye)
        eye[1] = (float("nan"), 0.0)
        self.assertIsNone(extract(LandmarkSet(eye, lm.right_eye, lm.nose, lm.mouth_contour)))

    def test_tiny_face_still_finite(self):
        # just above the epsilon, results must stay finite
        lm = synth.neutral()
        scale = 1e-4

        def shrink(points):
            return [(x * scale, y * scale) for x, y in points]

        small = LandmarkSet(shrink(lm.left_eye), shrink(lm.right_eye),
                            shrink(lm.nose), shrink(lm.mouth_contour))
        signals = extract(small)
        self.assertIsNotNone(signals)
        for field in dataclasses.fields(signals):
            self.assertTrue(math.isfinite(getattr(signals, field.name)))


class TestLandmarkSet(unittest.TestCase):

    def test_rejects_wrong_group_sizes(self):
        lm = synth.neutral()
        with self.assertRaises(ValueError):
            LandmarkSet(lm.left_eye[:5], lm.right_eye, lm.nose, lm.mouth_contour)
        with self.assertRaises(ValueError):
            LandmarkSet(lm.left_eye, lm.right_eye, lm.nose[:3], lm.mouth_contour)
        with self.assertRaises(ValueError):
            LandmarkSet(lm.left_eye, lm.right_eye, lm.nose, lm.mouth_contour[:19])

    def test_points_normalised_to_float_tuples(self):
        lm = LandmarkSet(
            left_eye=[[0, 0], [1, -1], [3, -1], [4, 0], [3, 1], [1, 1]],
            right_eye=synth.neutral().right_eye,
            nose=synth.neutral().nose,
            mouth_contour=synth.neutral().mouth_contour,
        )
        self.assertIsInstance(lm.left_eye, tuple)
        self.assertEqual(lm.left_eye[1], (1.0, -1.0))

    def test_immutable(self):
        lm = synth.neutral()
        with self.assertRaises(dataclasses.FrozenInstanceError):
            lm.nose = ()


if __name__ == "__main__":
    unittest.main()
