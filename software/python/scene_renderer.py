"""
Coin Metrology System - Scene Renderer
Draws coin, phone and the edge-map inset onto the displayed frame
"""

import cv2
import numpy as np

from config.settings import DISPLAY_CONFIG


class SceneRenderer:
    """Overlay drawing; frames are modified in place"""

    def __init__(self, display_config=None):
        self.display_config = display_config or DISPLAY_CONFIG
        colors = self.display_config['colors']
        self.color_coin = tuple(colors['coin'])
        self.color_phone = tuple(colors['phone'])
        self.color_text = tuple(colors['text'])
        self.color_debug = tuple(colors['debug'])

    def render_coin(self, target, rect, dist_mm, tilt_deg):
        """Draw the fitted coin ellipse with its distance and tilt"""
        cv2.ellipse(target, rect.to_cv(), self.color_coin, self.display_config['coin_line_thickness'])
        cx, cy = rect.center

        cv2.putText(target, f"Tilt: {tilt_deg:.1f} deg", (int(cx), int(cy + 45)),
                    cv2.FONT_HERSHEY_PLAIN, 1.2, self.color_text, 2)
        cv2.putText(target, f"Dist: {dist_mm:.1f}mm", (int(cx), int(cy + 25)),
                    cv2.FONT_HERSHEY_PLAIN, 1.2, self.color_text, 2)

    def render_phone(self, target, rect, width_mm, height_mm):
        """Draw the phone box; dimensions only when they are known"""
        pts = np.round(rect.points()).astype(np.int32)
        cv2.polylines(target, [pts], True, self.color_phone, self.display_config['phone_line_thickness'])

        if width_mm > 0 and height_mm > 0:
            cx, cy = rect.center
            for prefix, dim, offset in (("W", width_mm, -10), ("H", height_mm, 25)):
                cv2.putText(target, f"{prefix}: {dim:.1f}mm", (int(cx), int(cy + offset)),
                            cv2.FONT_HERSHEY_SIMPLEX, 0.8, self.color_phone, 2)

    def render_debug_pip(self, target, edge_mask):
        """Picture-in-picture of the edge map in the top-left corner"""
        if edge_mask is None or edge_mask.size == 0:
            return

        scale = self.display_config['pip_scale']
        debug_small = cv2.resize(edge_mask, None, fx=scale, fy=scale)
        if len(debug_small.shape) == 2:
            debug_small = cv2.cvtColor(debug_small, cv2.COLOR_GRAY2BGR)

        h, w = debug_small.shape[:2]
        if h <= target.shape[0] and w <= target.shape[1]:
            target[0:h, 0:w] = debug_small

        cv2.putText(target, "Canny Edge", (5, 15), cv2.FONT_HERSHEY_PLAIN, 1.0, self.color_debug, 1)

    def render_frame(self, target, report):
        """Draw everything a FrameReport carries"""
        coin, phone, bundle = report.coin, report.phone, report.measurements
        if coin.found:
            self.render_coin(target, coin.rect, bundle.distance_mm, bundle.tilt_deg)
        if phone.found:
            self.render_phone(target, phone.rect, bundle.width_mm, bundle.height_mm)
        self.render_debug_pip(target, report.edges)
        return target
