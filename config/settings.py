"""
Coin Metrology System - Configuration Settings
Camera, preprocessing, reference coins and shape classifier thresholds
"""

from dataclasses import dataclass, fields

# Camera Configuration
CAMERA_ID = 0
CAMERA_WIDTH = 1920
CAMERA_HEIGHT = 1080
CAMERA_FPS = 30
CAMERA_READ_TIMEOUT_S = 2.0        # Seconds to wait for a fresh frame
CAMERA_MAX_READ_FAILURES = 5       # Consecutive misses before giving up
CAMERA_RETRY_BACKOFF_S = 0.1       # First retry delay, doubled per miss
CAMERA_RETRY_BACKOFF_MAX_S = 2.0

# Image Processing Parameters
IMAGE_PIPELINE = {
    'gaussian_sigma': 2.0,
    'canny_low': 30,
    'canny_high': 100,
    'aperture_size': 3,
    'l2_gradient': True,
    'dilation_kernel': 3,          # Rectangular structuring element size
    'dilation_iterations': 1
}

# Reference coins (diameter in millimeters)
REFERENCE_OBJECTS = {
    "1 Shekel": 18.0,
    "2 Shekel": 21.6,
    "5 Shekel": 24.0,
    "10 Shekel": 26.0,
    "1 Euro": 23.25,
    "2 Euro": 25.75,
    "US Quarter": 24.26
}
DEFAULT_REFERENCE_OBJECT = "5 Shekel"

# Pinhole model
METROLOGY = {
    'focal_length_px': 800.0,      # Per-camera constant, override with --focal-length
}

# Coin classifier
COIN_DETECTION = {
    'min_area': 500.0,             # px^2, fast rejection on raw contour area
    'max_fit_area': 50000.0,       # px^2, ellipse area ceiling (table edges, the phone)
    'min_axis_ratio': 0.2,         # minor/major, rejects line-like fits
    'min_vertices_exclusive': 6,   # simplified polygon must have MORE vertices than this
    'min_arc_points': 6,           # points needed to refit on the upper arc
    'approx_epsilon_ratio': 0.02   # Douglas-Peucker tolerance as fraction of perimeter
}

# Rectangle (phone) classifier
PHONE_POLICIES = ('corner_angle', 'fill_ratio')
PHONE_DETECTION = {
    'min_area': 50000.0,           # px^2
    'policy': 'corner_angle',
    'max_cosine': 0.2,             # corner_angle: max |cos| of any corner
    'min_fill_ratio': 0.9,         # fill_ratio: contour area / min-area-rect area
    'approx_epsilon_ratio': 0.02
}

# Display and UI Configuration
DISPLAY_CONFIG = {
    'window_name': 'Coin Metrology',
    'exit_key': 27,                # ESC
    'pip_scale': 0.25,
    'colors': {
        'coin': [0, 255, 255],     # Yellow
        'phone': [0, 255, 0],      # Green
        'text': [0, 255, 255],
        'debug': [0, 0, 255]       # Red
    },
    'coin_line_thickness': 2,
    'phone_line_thickness': 3
}

# File Paths
PATHS = {
    'measurement_logs': 'data/measurements/',
    'captured_images': 'images/samples/'
}

# Debug and Logging
DEBUG_CONFIG = {
    'enable_detection_debug': False,   # Per-candidate classifier traces
    'enable_measurement_debug': False, # Per-frame measurement traces
    'log_every_n_frames': 150
}


@dataclass(frozen=True)
class MetrologyConfig:
    """Immutable thresholds and camera constants shared by the classifiers and metrology"""
    coin_diameter_mm: float = REFERENCE_OBJECTS[DEFAULT_REFERENCE_OBJECT]
    focal_length_px: float = METROLOGY['focal_length_px']
    min_coin_area: float = COIN_DETECTION['min_area']
    max_coin_fit_area: float = COIN_DETECTION['max_fit_area']
    min_coin_axis_ratio: float = COIN_DETECTION['min_axis_ratio']
    coin_min_vertices_exclusive: int = COIN_DETECTION['min_vertices_exclusive']
    coin_min_arc_points: int = COIN_DETECTION['min_arc_points']
    min_phone_area: float = PHONE_DETECTION['min_area']
    phone_policy: str = PHONE_DETECTION['policy']
    phone_max_cosine: float = PHONE_DETECTION['max_cosine']
    phone_min_fill_ratio: float = PHONE_DETECTION['min_fill_ratio']
    approx_epsilon_ratio: float = COIN_DETECTION['approx_epsilon_ratio']
    debug: bool = DEBUG_CONFIG['enable_detection_debug']

    def __post_init__(self):
        if self.coin_diameter_mm <= 0:
            raise ValueError(f"Coin diameter must be positive, got {self.coin_diameter_mm}")
        if self.focal_length_px <= 0:
            raise ValueError(f"Focal length must be positive, got {self.focal_length_px}")
        if self.min_coin_area < 0 or self.min_phone_area < 0:
            raise ValueError("Minimum areas must not be negative")
        if self.max_coin_fit_area <= self.min_coin_area:
            raise ValueError("Coin fit area ceiling must exceed the minimum coin area")
        if not 0.0 < self.min_coin_axis_ratio < 1.0:
            raise ValueError(f"Coin axis ratio must lie in (0, 1), got {self.min_coin_axis_ratio}")
        if self.coin_min_arc_points < 5:
            raise ValueError("Ellipse refit needs at least 5 arc points")
        if self.phone_policy not in PHONE_POLICIES:
            raise ValueError(f"Unknown phone policy '{self.phone_policy}', "
                             f"expected one of {PHONE_POLICIES}")
        if not 0.0 < self.approx_epsilon_ratio < 1.0:
            raise ValueError("Polygon approximation ratio must lie in (0, 1)")


def build_metrology_config(**overrides):
    """Build a MetrologyConfig from the settings above, applying keyword overrides"""
    known = {f.name for f in fields(MetrologyConfig)}
    unknown = set(overrides) - known
    if unknown:
        raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")
    return MetrologyConfig(**overrides)


# Validation functions
def get_reference_diameter(obj_name):
    """Get the diameter in mm of a known reference coin"""
    if obj_name not in REFERENCE_OBJECTS:
        raise ValueError(f"Reference object '{obj_name}' not found")
    return REFERENCE_OBJECTS[obj_name]


def get_available_reference_objects():
    """Get list of available reference coins"""
    return list(REFERENCE_OBJECTS.keys())


# Print configuration summary
if __name__ == "__main__":
    config = build_metrology_config()
    print("Coin Metrology System Configuration")
    print("=" * 50)
    print(f"Camera: {CAMERA_WIDTH}x{CAMERA_HEIGHT} @ {CAMERA_FPS}fps (ID: {CAMERA_ID})")
    print(f"Focal length: {config.focal_length_px}px")
    print(f"Edge Detection: Low={IMAGE_PIPELINE['canny_low']}, High={IMAGE_PIPELINE['canny_high']}")
    print(f"Phone policy: {config.phone_policy}")
    print("\nAvailable Reference Coins:")
    for obj_name, diameter in REFERENCE_OBJECTS.items():
        marker = " (default)" if obj_name == DEFAULT_REFERENCE_OBJECT else ""
        print(f"  • {obj_name}: {diameter}mm diameter{marker}")
