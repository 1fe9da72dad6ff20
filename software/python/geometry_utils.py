"""
Coin Metrology System - Shared Geometry Helpers
Rotated rectangles, contour descriptors, corner cosines and corner ordering
"""

from __future__ import annotations

import math
import sys
from dataclasses import dataclass
from typing import Tuple

import cv2
import numpy as np

EPSILON = sys.float_info.epsilon


@dataclass(frozen=True)
class RotatedRect:
    """Center, axis lengths and rotation of a rectangle or ellipse envelope"""
    center: Tuple[float, float] = (0.0, 0.0)
    size: Tuple[float, float] = (0.0, 0.0)
    angle: float = 0.0

    @classmethod
    def from_cv(cls, box) -> RotatedRect:
        """Wrap the ((cx, cy), (w, h), angle) tuple returned by OpenCV fitters."""
        (cx, cy), (w, h), angle = box
        return cls(center=(float(cx), float(cy)), size=(float(w), float(h)), angle=float(angle))

    def to_cv(self):
        return (self.center, self.size, self.angle)

    def points(self) -> np.ndarray:
        """Four corner points as a float32 (4, 2) array."""
        return cv2.boxPoints(self.to_cv()).astype(np.float32)

    @property
    def major(self) -> float:
        return max(self.size)

    @property
    def minor(self) -> float:
        return min(self.size)

    @property
    def area(self) -> float:
        return self.size[0] * self.size[1]


@dataclass
class ShapeCandidate:
    """A contour plus the scalar descriptors both classifiers gate on"""
    contour: np.ndarray
    area: float
    perimeter: float
    approx: np.ndarray
    is_convex: bool

    @property
    def vertices(self) -> int:
        return len(self.approx)

    @classmethod
    def from_contour(cls, contour, area=None, epsilon_ratio=0.02) -> ShapeCandidate:
        """
        Describe a contour for admission testing

        Args:
            contour: Closed point sequence as produced by cv2.findContours
            area: Precomputed contour area, if the caller already has it
            epsilon_ratio: Douglas-Peucker tolerance as a fraction of the perimeter
        """
        if area is None:
            area = cv2.contourArea(contour)
        perimeter = cv2.arcLength(contour, True)
        approx = cv2.approxPolyDP(contour, epsilon_ratio * perimeter, True)
        return cls(
            contour=contour,
            area=float(area),
            perimeter=float(perimeter),
            approx=approx,
            is_convex=bool(cv2.isContourConvex(approx))
        )


def angle_cosine(pt1, pt0, pt2) -> float:
    """Cosine of the angle at pt0 formed by the edges towards pt1 and pt2"""
    v1 = np.asarray(pt1, dtype=np.float64).reshape(2) - np.asarray(pt0, dtype=np.float64).reshape(2)
    v2 = np.asarray(pt2, dtype=np.float64).reshape(2) - np.asarray(pt0, dtype=np.float64).reshape(2)
    n1 = np.linalg.norm(v1)
    n2 = np.linalg.norm(v2)
    if n1 > EPSILON:
        v1 = v1 / n1
    if n2 > EPSILON:
        v2 = v2 / n2
    return float(np.clip(np.dot(v1, v2), -1.0, 1.0))


def max_cosine_deviation(approx) -> float:
    """
    Rectangularity deviation of a quadrilateral

    Returns the largest |cos| over the four interior corners, 0 for a
    perfect rectangle.
    """
    pts = np.asarray(approx).reshape(-1, 2)
    if len(pts) != 4:
        raise ValueError(f"Expected 4 vertices, got {len(pts)}")

    max_cos = 0.0
    for j in range(4):
        # Vertex of the angle is the middle point
        cos_val = abs(angle_cosine(pts[j], pts[(j + 1) % 4], pts[(j + 2) % 4]))
        max_cos = max(max_cos, cos_val)
    return max_cos


def order_corners(points) -> np.ndarray:
    """
    Order four corners as top-left, top-right, bottom-right, bottom-left

    Corners are sorted by their angle around the centroid (clockwise on
    screen, since image y grows downwards) and the cycle is rotated to
    start at the corner with the smallest x + y.
    """
    pts = np.asarray(points, dtype=np.float32).reshape(-1, 2)
    if len(pts) != 4:
        raise ValueError(f"Expected 4 corner points, got {len(pts)}")

    center = pts.mean(axis=0)
    angles = np.arctan2(pts[:, 1] - center[1], pts[:, 0] - center[0])
    cyclic = pts[np.argsort(angles, kind='stable')]

    start = int(np.argmin(cyclic.sum(axis=1)))
    return np.roll(cyclic, -start, axis=0)


def axis_ratio(major: float, minor: float) -> float:
    """minor / major, or 0 for a degenerate fit"""
    if major > EPSILON:
        return minor / major
    return 0.0


def ellipse_area(major: float, minor: float) -> float:
    """Area of an ellipse given its full axis lengths"""
    return math.pi * major * minor / 4.0
