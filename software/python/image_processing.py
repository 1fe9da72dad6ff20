"""
Coin Metrology System - Image Processing Module
Edge map and external contour extraction for the shape classifiers
"""

import cv2
import numpy as np

from config.settings import IMAGE_PIPELINE


class ImagePipeline:
    """Grayscale, blur, Canny and dilation producing a binary edge mask"""

    def __init__(self, params=None):
        self.edge_params = dict(IMAGE_PIPELINE)
        if params:
            self.edge_params.update(params)

        size = int(self.edge_params['dilation_kernel'])
        self.kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (size, size))

    def process_frame(self, frame):
        """
        Produce the binary edge map of a frame
        Args:
            frame: BGR or single-channel image
        Returns:
            uint8 edge mask with the frame's pixel dimensions
        """
        if frame is None or frame.size == 0:
            raise ValueError("Cannot process an empty frame")

        if len(frame.shape) == 3:
            gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
        else:
            gray = frame

        params = self.edge_params
        blurred = cv2.GaussianBlur(gray, (0, 0), params['gaussian_sigma'])
        edges = cv2.Canny(blurred, params['canny_low'], params['canny_high'],
                          apertureSize=params['aperture_size'], L2gradient=params['l2_gradient'])
        edges = cv2.dilate(edges, self.kernel, iterations=params['dilation_iterations'])
        return edges

    def find_contours(self, edges):
        """External boundaries of the edge mask as a list of point arrays"""
        contours, _ = cv2.findContours(edges, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
        return list(contours)

    def edge_density(self, edges):
        """Fraction of edge pixels, a quick sanity metric for threshold tuning"""
        if edges.size == 0:
            return 0.0
        return float(np.count_nonzero(edges)) / edges.size
