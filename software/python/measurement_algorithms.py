"""
Coin Metrology System - Measurement Algorithms Module
Pinhole-model conversion of coin and rectangle pixel geometry into millimeters,
plus a passive per-run measurement log with statistical analysis
"""

import json
import math
import time
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

import numpy as np
from scipy import stats

from config.settings import DEBUG_CONFIG, MetrologyConfig
from geometry_utils import EPSILON
from object_detection import CoinResult, PhoneResult


def log_with_timestamp(message):
    """Print message with timestamp"""
    timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]
    print(f"[{timestamp}] MEASURE: {message}")


@dataclass
class MeasurementBundle:
    """
    Physical measurements of one frame

    width_mm and height_mm are 0 when no scale was available in the same
    frame; 0 means unknown, not a zero-sized object.
    """
    coin_found: bool = False
    phone_found: bool = False
    distance_mm: float = 0.0
    tilt_deg: float = 0.0
    width_mm: float = 0.0
    height_mm: float = 0.0
    scale_px_per_mm: float = 0.0

    @property
    def has_scale(self) -> bool:
        return self.coin_found and self.scale_px_per_mm > EPSILON

    @property
    def dimensions_known(self) -> bool:
        return self.phone_found and self.width_mm > 0 and self.height_mm > 0

    def to_dict(self) -> Dict:
        return asdict(self)


def coin_distance_mm(major_px: float, diameter_mm: float, focal_length_px: float) -> float:
    """Distance to the coin: apparent size is inversely proportional to distance"""
    if major_px <= EPSILON:
        return 0.0
    return diameter_mm * focal_length_px / major_px


def coin_tilt_deg(major_px: float, minor_px: float) -> float:
    """Viewing angle off fronto-parallel, from the ellipse axis compression"""
    if major_px <= EPSILON:
        return 0.0
    ratio = min(max(minor_px / major_px, 0.0), 1.0)
    return math.degrees(math.acos(ratio))


def compute_measurements(coin: CoinResult, phone: PhoneResult,
                         config: MetrologyConfig = None) -> MeasurementBundle:
    """
    Convert the classifier outputs of one frame into millimeter measurements

    Args:
        coin: Best coin of the frame
        phone: Best rectangle of the frame
        config: Coin diameter and focal length

    Returns:
        MeasurementBundle; rectangle dimensions only when this frame's coin
        gave a usable scale
    """
    config = config or MetrologyConfig()
    bundle = MeasurementBundle(coin_found=coin.found, phone_found=phone.found)

    if coin.found:
        major, minor = coin.rect.major, coin.rect.minor
        bundle.scale_px_per_mm = major / config.coin_diameter_mm
        bundle.distance_mm = coin_distance_mm(major, config.coin_diameter_mm, config.focal_length_px)
        bundle.tilt_deg = coin_tilt_deg(major, minor)

    if phone.found and bundle.has_scale:
        short_side_px, long_side_px = sorted(phone.rect.size)
        bundle.width_mm = short_side_px / bundle.scale_px_per_mm
        bundle.height_mm = long_side_px / bundle.scale_px_per_mm

    if DEBUG_CONFIG['enable_measurement_debug'] or config.debug:
        log_with_timestamp(f"scale={bundle.scale_px_per_mm:.4f} px/mm, dist={bundle.distance_mm:.1f}mm, "
                           f"tilt={bundle.tilt_deg:.1f}deg, W={bundle.width_mm:.1f}mm, H={bundle.height_mm:.1f}mm")
    return bundle


class MeasurementLog:
    """
    Recorder of per-frame measurement bundles for a run

    An output sink outside the per-frame lifecycle: only reports on what was
    recorded, and nothing here is read back by the frame pipeline.
    """

    FIELDS = ('distance_mm', 'tilt_deg', 'width_mm', 'height_mm', 'scale_px_per_mm')

    def __init__(self, debug_mode=False):
        self.debug_mode = debug_mode
        self.measurement_history = []
        self.measurement_params = {
            'outlier_threshold': 2.0,      # Standard deviations
            'min_samples_for_stats': 3,
            'min_samples_for_normality': 8,
            'confidence_level': 0.95
        }

    def record(self, bundle: MeasurementBundle, frame_index: Optional[int] = None):
        entry = bundle.to_dict()
        entry['frame_index'] = frame_index if frame_index is not None else len(self.measurement_history)
        entry['timestamp'] = datetime.now().isoformat()
        self.measurement_history.append(entry)

    def samples(self, field_name: str) -> np.ndarray:
        """Values of a field over the frames where it was actually measured"""
        if field_name not in self.FIELDS:
            raise ValueError(f"Unknown measurement field '{field_name}'")

        if field_name in ('width_mm', 'height_mm'):
            valid = [m for m in self.measurement_history
                     if m['phone_found'] and m['width_mm'] > 0 and m['height_mm'] > 0]
        else:
            valid = [m for m in self.measurement_history if m['coin_found']]
        return np.array([m[field_name] for m in valid], dtype=np.float64)

    def statistics(self, field_name: str) -> Dict:
        """
        Statistical analysis of one measurement field

        Args:
            field_name: One of FIELDS

        Returns:
            Dictionary with statistical results, or an 'error' entry when
            there are too few samples
        """
        start_time = time.time()
        values = self.samples(field_name)

        if len(values) < self.measurement_params['min_samples_for_stats']:
            return {'error': 'Insufficient data for statistical analysis', 'count': len(values)}

        stats_result = {
            'count': len(values),
            'mean': float(np.mean(values)),
            'std': float(np.std(values, ddof=1)),
            'median': float(np.median(values)),
            'min': float(np.min(values)),
            'max': float(np.max(values)),
            'range': float(np.max(values) - np.min(values))
        }

        # Outlier detection
        outliers = self._detect_outliers(values, self.measurement_params['outlier_threshold'])
        stats_result['outliers'] = {
            'count': len(outliers),
            'values': values[outliers].tolist()
        }

        # Confidence intervals
        confidence_level = self.measurement_params['confidence_level']
        sem = stats.sem(values)
        if sem > 0:
            ci = stats.t.interval(confidence_level, len(values) - 1,
                                  loc=stats_result['mean'], scale=sem)
            lower, upper = float(ci[0]), float(ci[1])
        else:
            lower = upper = stats_result['mean']
        stats_result['confidence_interval'] = {
            'level': confidence_level,
            'lower': lower,
            'upper': upper,
            'margin_of_error': (upper - lower) / 2
        }

        # Normality test (if enough samples)
        if len(values) >= self.measurement_params['min_samples_for_normality'] and stats_result['std'] > 0:
            shapiro_stat, shapiro_p = stats.shapiro(values)
            stats_result['normality_test'] = {
                'shapiro_wilk_statistic': float(shapiro_stat),
                'p_value': float(shapiro_p),
                'is_normal': bool(shapiro_p > 0.05)
            }

        if abs(stats_result['mean']) > 0:
            stats_result['relative_precision_percent'] = stats_result['std'] / abs(stats_result['mean']) * 100

        stats_result['processing_time'] = (time.time() - start_time) * 1000

        if self.debug_mode:
            log_with_timestamp(f"Statistical analysis of {field_name}: {stats_result['count']} samples, "
                               f"mean={stats_result['mean']:.3f}±{stats_result['std']:.3f}")
        return stats_result

    def summary(self) -> Dict:
        """Get summary of the recorded run"""
        if not self.measurement_history:
            return {'message': 'No measurements recorded'}

        total = len(self.measurement_history)
        coin_frames = sum(1 for m in self.measurement_history if m['coin_found'])
        phone_frames = sum(1 for m in self.measurement_history if m['phone_found'])
        measured_frames = len(self.samples('width_mm'))

        return {
            'total_frames': total,
            'coin_detection_rate': coin_frames / total,
            'phone_detection_rate': phone_frames / total,
            'dimension_rate': measured_frames / total,
            'latest_measurement': self.measurement_history[-1]['timestamp'],
            'statistics': {name: self.statistics(name) for name in self.FIELDS}
        }

    def export(self, filename: str, format: str = 'json') -> Path:
        """
        Export measurement history and statistics

        Args:
            filename: Output filename
            format: Export format ('json', 'csv')
        """
        filepath = Path(filename)
        filepath.parent.mkdir(parents=True, exist_ok=True)

        if format.lower() == 'json':
            export_data = {
                'measurements': self.measurement_history,
                'summary': self.summary(),
                'export_timestamp': datetime.now().isoformat(),
                'measurement_count': len(self.measurement_history)
            }
            with open(filepath, 'w') as f:
                json.dump(export_data, f, indent=2, default=self._json_serializer)

        elif format.lower() == 'csv':
            import pandas as pd
            df = pd.DataFrame(self.measurement_history)
            df.to_csv(filepath, index=False)

        else:
            raise ValueError(f"Unsupported export format '{format}'")

        log_with_timestamp(f"Measurement data exported to {filepath}")
        return filepath

    def clear(self):
        """Clear all measurement history"""
        self.measurement_history.clear()
        if self.debug_mode:
            log_with_timestamp("Measurement history cleared")

    def _detect_outliers(self, values: np.ndarray, threshold: float) -> np.ndarray:
        """Indices of values more than threshold standard deviations from the mean"""
        std = np.std(values)
        if std == 0:
            return np.array([], dtype=int)
        z_scores = np.abs((values - np.mean(values)) / std)
        return np.where(z_scores > threshold)[0]

    def _json_serializer(self, obj):
        """Custom JSON serializer for numpy types"""
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        elif isinstance(obj, np.integer):
            return int(obj)
        elif isinstance(obj, np.floating):
            return float(obj)
        elif isinstance(obj, np.bool_):
            return bool(obj)
        return str(obj)
