"""Unit tests for the coin and phone classifiers."""
import math

import cv2
import numpy as np
import pytest

import object_detection
from config.settings import build_metrology_config
from geometry_utils import RotatedRect, order_corners
from object_detection import CoinDetector, CoinResult, PhoneDetector, PhoneResult


class TestCoinDetector:

    def test_empty_contour_set(self, config):
        result = CoinDetector(config).detect_best_coin([])
        assert result == CoinResult()
        assert not result.found
        assert result.area == 0.0
        assert result.homography is None
        assert result.rect == RotatedRect()

    def test_selects_largest_eligible_coin(self, circle_contour):
        config = build_metrology_config(min_coin_area=500.0)
        # Areas of roughly 100, 5000, 20000 and 60000 px^2
        contours = [
            circle_contour((50, 50), 6),
            circle_contour((150, 150), 40),
            circle_contour((400, 300), 80),
            circle_contour((800, 600), 138),
        ]
        result = CoinDetector(config).detect_best_coin(contours)

        assert result.found
        assert result.area == pytest.approx(math.pi * 80 ** 2, rel=0.03)
        assert result.rect.center[0] == pytest.approx(400, abs=2)
        assert result.rect.center[1] == pytest.approx(300, abs=2)

    def test_oversized_coin_rejected(self, circle_contour, config):
        result = CoinDetector(config).detect_best_coin([circle_contour((300, 300), 138)])
        assert not result.found

    def test_small_contour_rejected(self, circle_contour, config):
        result = CoinDetector(config).detect_best_coin([circle_contour((50, 50), 6)])
        assert not result.found

    def test_quadrilateral_is_not_a_coin(self, rect_contour, config):
        result = CoinDetector(config).detect_best_coin([rect_contour((200, 200), (100, 80))])
        assert not result.found

    def test_tilted_coin_axes(self, ellipse_contour, config):
        result = CoinDetector(config).detect_best_coin([ellipse_contour((300, 300), (50, 40))])
        assert result.found
        assert result.rect.minor / result.rect.major == pytest.approx(0.8, abs=0.03)

    def test_upper_arc_ignores_occluded_bottom(self, circle_contour, config):
        contour = circle_contour((300, 300), 60).reshape(-1, 2)
        # Flatten the lower arc as if a shadow merged into it
        squashed = contour.copy()
        squashed[squashed[:, 1] > 340, 1] = 340

        fit = CoinDetector(config)._fit_upper_arc(squashed.reshape(-1, 1, 2))
        assert fit.center[1] == pytest.approx(300, abs=4)
        assert fit.minor / fit.major > 0.93

    def test_homography_maps_envelope_to_square(self, circle_contour, config):
        result = CoinDetector(config).detect_best_coin([circle_contour((250, 200), 50)])
        assert result.found
        assert result.homography is not None
        assert result.homography.shape == (3, 3)

        src = order_corners(result.rect.points())
        s = result.rect.major
        expected = np.array([[0, 0], [s, 0], [s, s], [0, s]], dtype=np.float32)
        np.testing.assert_allclose(result.rectify_points(src), expected, atol=1e-2)

    def test_homography_failure_keeps_coin(self, circle_contour, config, monkeypatch):
        monkeypatch.setattr(object_detection.cv2, "findHomography", lambda src, dst: (None, None))
        result = CoinDetector(config).detect_best_coin([circle_contour((250, 200), 50)])
        assert result.found
        assert result.homography is None
        assert result.rectify_points([(0, 0)]) is None

    def test_homography_error_keeps_coin(self, circle_contour, config, monkeypatch):
        def failing_solve(src, dst):
            raise cv2.error("degenerate point set")

        monkeypatch.setattr(object_detection.cv2, "findHomography", failing_solve)
        result = CoinDetector(config).detect_best_coin([circle_contour((250, 200), 50)])
        assert result.found
        assert result.homography is None
        assert result.area > 0

    def test_equal_coins_first_one_wins(self, circle_contour, config):
        contours = [circle_contour((100, 200), 40), circle_contour((400, 200), 40)]
        result = CoinDetector(config).detect_best_coin(contours)
        assert result.found
        assert result.rect.center[0] == pytest.approx(100, abs=2)

    def test_to_dict(self, circle_contour, config):
        data = CoinDetector(config).detect_best_coin([circle_contour((250, 200), 50)]).to_dict()
        assert data['found'] is True
        assert len(data['homography']) == 3
        assert data['area'] > 0


class TestPhoneDetector:

    def test_empty_contour_set(self, config):
        result = PhoneDetector(config).detect_best_phone([])
        assert result == PhoneResult()
        assert not result.found
        assert result.area == 0.0

    def test_accepts_rotated_rectangle(self, rect_contour, config):
        result = PhoneDetector(config).detect_best_phone([rect_contour((400, 300), (300, 400), 20)])
        assert result.found
        assert sorted(result.rect.size) == pytest.approx([300, 400], abs=3)
        assert result.area == pytest.approx(120000, rel=0.01)

    def test_keeps_largest_rectangle(self, rect_contour, config):
        contours = [rect_contour((300, 300), (250, 350)), rect_contour((900, 300), (300, 400))]
        result = PhoneDetector(config).detect_best_phone(contours)
        assert result.found
        assert result.rect.center[0] == pytest.approx(900, abs=1)

    def test_equal_rectangles_first_one_wins(self, rect_contour, config):
        contours = [rect_contour((300, 300), (300, 400)), rect_contour((900, 300), (300, 400))]
        result = PhoneDetector(config).detect_best_phone(contours)
        assert result.found
        assert result.rect.center[0] == pytest.approx(300, abs=1)

    def test_rejects_small_rectangle(self, rect_contour, config):
        assert not PhoneDetector(config).detect_best_phone([rect_contour((100, 100), (100, 100))]).found

    def test_rejects_parallelogram(self, polygon_contour, config):
        skewed = polygon_contour([(0, 0), (400, 0), (500, 300), (100, 300)])
        assert not PhoneDetector(config).detect_best_phone([skewed]).found

    def test_rejects_large_circle(self, circle_contour, config):
        assert not PhoneDetector(config).detect_best_phone([circle_contour((400, 400), 200)]).found


class TestFillRatioPolicy:

    @pytest.fixture
    def fill_config(self):
        return build_metrology_config(phone_policy='fill_ratio')

    def test_accepts_rectangle(self, rect_contour, fill_config):
        result = PhoneDetector(fill_config).detect_best_phone([rect_contour((400, 300), (300, 400), 15)])
        assert result.found

    def test_accepts_rounded_corners(self, fill_config):
        canvas = np.zeros((600, 700), dtype=np.uint8)
        x0, y0, x1, y1, r = 100, 100, 500, 400, 30
        cv2.rectangle(canvas, (x0 + r, y0), (x1 - r, y1), 255, -1)
        cv2.rectangle(canvas, (x0, y0 + r), (x1, y1 - r), 255, -1)
        for cx, cy in ((x0 + r, y0 + r), (x1 - r, y0 + r), (x1 - r, y1 - r), (x0 + r, y1 - r)):
            cv2.circle(canvas, (cx, cy), r, 255, -1)
        contours, _ = cv2.findContours(canvas, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)

        result = PhoneDetector(fill_config).detect_best_phone(list(contours))
        assert result.found
        assert sorted(result.rect.size) == pytest.approx([300, 400], abs=3)

    def test_rejects_circle_and_trapezoid(self, circle_contour, polygon_contour, fill_config):
        trapezoid = polygon_contour([(0, 0), (400, 0), (300, 300), (100, 300)])
        result = PhoneDetector(fill_config).detect_best_phone([circle_contour((400, 400), 200), trapezoid])
        assert not result.found
