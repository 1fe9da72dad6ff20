"""
Coin Metrology System - Object Detection Module
Classifies contours into the best reference coin and the best rectangular object
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

import cv2
import numpy as np

from config.settings import MetrologyConfig
from geometry_utils import (RotatedRect, ShapeCandidate, axis_ratio, ellipse_area,
                            max_cosine_deviation, order_corners)


def log_with_timestamp(message):
    """Print message with timestamp"""
    timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]
    print(f"[{timestamp}] DETECTION: {message}")


@dataclass
class CoinResult:
    """Best coin candidate of a frame; fields other than found are meaningless when found is False"""
    found: bool = False
    rect: RotatedRect = field(default_factory=RotatedRect)
    homography: Optional[np.ndarray] = None
    area: float = 0.0

    def rectify_points(self, points) -> Optional[np.ndarray]:
        """Map image points into the coin's fronto-parallel plane"""
        if not self.found or self.homography is None:
            return None
        pts = np.asarray(points, dtype=np.float32).reshape(-1, 1, 2)
        return cv2.perspectiveTransform(pts, self.homography).reshape(-1, 2)

    def to_dict(self) -> Dict:
        return {
            'found': self.found,
            'center': list(self.rect.center),
            'size': list(self.rect.size),
            'angle': self.rect.angle,
            'area': self.area,
            'homography': self.homography.tolist() if self.homography is not None else None
        }


@dataclass
class PhoneResult:
    """Best rectangle candidate of a frame"""
    found: bool = False
    rect: RotatedRect = field(default_factory=RotatedRect)
    area: float = 0.0

    def to_dict(self) -> Dict:
        return {
            'found': self.found,
            'center': list(self.rect.center),
            'size': list(self.rect.size),
            'angle': self.rect.angle,
            'area': self.area
        }


class CoinDetector:
    """Selects the largest plausible coin ellipse among the contours of one frame"""

    def __init__(self, config: MetrologyConfig = None):
        self.config = config or MetrologyConfig()

    def detect_best_coin(self, contours: List[np.ndarray]) -> CoinResult:
        """
        Scan contours for the best coin candidate

        Candidates are admitted when their simplified polygon is convex with
        more vertices than the configured bound. The ellipse is refit on the
        upper arc only, and the largest fitted area below the ceiling wins.
        Ties keep the first candidate in input order.

        Args:
            contours: Contours from cv2.findContours

        Returns:
            CoinResult, found=False when nothing qualified
        """
        cfg = self.config
        best_result = CoinResult()

        for index, contour in enumerate(contours):
            # Fast rejection
            area = cv2.contourArea(contour)
            if area < cfg.min_coin_area:
                continue

            candidate = ShapeCandidate.from_contour(contour, area, cfg.approx_epsilon_ratio)
            if candidate.vertices <= cfg.coin_min_vertices_exclusive or not candidate.is_convex:
                continue

            try:
                fit = self._fit_upper_arc(contour)
            except cv2.error as e:
                log_with_timestamp(f"Ellipse fit failed on contour {index}: {e}")
                continue

            major, minor = fit.major, fit.minor
            ratio = axis_ratio(major, minor)
            fit_area = ellipse_area(major, minor)

            if cfg.debug:
                log_with_timestamp(f"Coin candidate {index}: vertices={candidate.vertices}, "
                                   f"ratio={ratio:.3f}, fit_area={fit_area:.1f}")

            if ratio > cfg.min_coin_axis_ratio and best_result.area < fit_area < cfg.max_coin_fit_area:
                best_result = CoinResult(
                    found=True,
                    rect=fit,
                    homography=self._rectifying_homography(fit),
                    area=fit_area
                )

        if cfg.debug and best_result.found:
            log_with_timestamp(f"Coin selected: center=({best_result.rect.center[0]:.1f}, "
                               f"{best_result.rect.center[1]:.1f}), major={best_result.rect.major:.1f}px")
        return best_result

    def _fit_upper_arc(self, contour) -> RotatedRect:
        """Fit the whole contour, then refit on the points above the first fit's center"""
        points = np.asarray(contour).reshape(-1, 2)
        fit = RotatedRect.from_cv(cv2.fitEllipse(points.astype(np.float32)))

        upper = points[points[:, 1] < fit.center[1]]
        if len(upper) >= self.config.coin_min_arc_points:
            fit = RotatedRect.from_cv(cv2.fitEllipse(upper.astype(np.float32)))
        return fit

    def _rectifying_homography(self, fit: RotatedRect) -> Optional[np.ndarray]:
        """Homography taking the fitted envelope corners onto a square of side major"""
        src_pts = order_corners(fit.points())
        s = float(fit.major)
        dst_pts = np.array([[0, 0], [s, 0], [s, s], [0, s]], dtype=np.float32)

        try:
            homography, _ = cv2.findHomography(src_pts, dst_pts)
        except cv2.error as e:
            log_with_timestamp(f"Homography solve failed: {e}")
            return None

        if homography is None:
            log_with_timestamp("Homography solve returned no solution")
        return homography


class PhoneDetector:
    """Selects the largest rectangle-like contour of one frame"""

    def __init__(self, config: MetrologyConfig = None):
        self.config = config or MetrologyConfig()

    def detect_best_phone(self, contours: List[np.ndarray]) -> PhoneResult:
        """
        Analyze contours to find the best candidate for a phone

        Filters applied with the corner_angle policy:
        1. Area >= min_phone_area
        2. Polygon approximation == 4 vertices
        3. Convexity check
        4. Rectangularity check (max cosine deviation)

        The fill_ratio policy replaces 2-4 with a contour area to
        min-area-rectangle area ratio, which tolerates rounded corners.

        Args:
            contours: Contours from cv2.findContours

        Returns:
            PhoneResult with the largest accepted candidate
        """
        cfg = self.config
        best_result = PhoneResult()

        if cfg.phone_policy == 'fill_ratio':
            admit = self._passes_fill_ratio
        else:
            admit = self._passes_corner_angle

        for index, contour in enumerate(contours):
            area = cv2.contourArea(contour)
            if area < cfg.min_phone_area:
                continue

            if not admit(contour, area, index):
                continue

            if area > best_result.area:
                best_result = PhoneResult(
                    found=True,
                    rect=RotatedRect.from_cv(cv2.minAreaRect(contour)),
                    area=float(area)
                )

        if cfg.debug and best_result.found:
            log_with_timestamp(f"Phone selected: {best_result.rect.size[0]:.1f}x"
                               f"{best_result.rect.size[1]:.1f}px, area={best_result.area:.0f}")
        return best_result

    def _passes_corner_angle(self, contour, area, index) -> bool:
        candidate = ShapeCandidate.from_contour(contour, area, self.config.approx_epsilon_ratio)
        if candidate.vertices != 4 or not candidate.is_convex:
            return False

        max_cos = max_cosine_deviation(candidate.approx)
        if self.config.debug:
            log_with_timestamp(f"Phone candidate {index}: max_cos={max_cos:.3f}")
        return max_cos < self.config.phone_max_cosine

    def _passes_fill_ratio(self, contour, area, index) -> bool:
        rect_area = RotatedRect.from_cv(cv2.minAreaRect(contour)).area
        if rect_area <= 0:
            return False

        fill = area / rect_area
        if self.config.debug:
            log_with_timestamp(f"Phone candidate {index}: fill_ratio={fill:.3f}")
        return fill > self.config.phone_min_fill_ratio
