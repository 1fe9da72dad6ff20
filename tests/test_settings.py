"""Unit tests for configuration loading and validation."""
from dataclasses import FrozenInstanceError

import pytest

from config.settings import (DEFAULT_REFERENCE_OBJECT, MetrologyConfig, build_metrology_config,
                             get_available_reference_objects, get_reference_diameter)


class TestMetrologyConfig:

    def test_defaults(self):
        config = build_metrology_config()
        assert config.coin_diameter_mm == 24.0
        assert config.focal_length_px == 800.0
        assert config.min_coin_area == 500.0
        assert config.max_coin_fit_area == 50000.0
        assert config.min_phone_area == 50000.0
        assert config.phone_policy == 'corner_angle'
        assert config.phone_max_cosine == 0.2

    def test_overrides(self):
        config = build_metrology_config(focal_length_px=85.0, phone_policy='fill_ratio')
        assert config.focal_length_px == 85.0
        assert config.phone_policy == 'fill_ratio'

    def test_immutable(self):
        config = build_metrology_config()
        with pytest.raises(FrozenInstanceError):
            config.focal_length_px = 100.0

    def test_unknown_key(self):
        with pytest.raises(ValueError):
            build_metrology_config(focal_px=85.0)

    @pytest.mark.parametrize("overrides", [
        {'coin_diameter_mm': 0.0},
        {'focal_length_px': -1.0},
        {'min_coin_area': -5.0},
        {'max_coin_fit_area': 100.0},
        {'min_coin_axis_ratio': 1.5},
        {'coin_min_arc_points': 3},
        {'phone_policy': 'circularity'},
        {'approx_epsilon_ratio': 0.0},
    ])
    def test_invalid_values(self, overrides):
        with pytest.raises(ValueError):
            MetrologyConfig(**overrides)


class TestReferenceObjects:

    def test_default_coin(self):
        assert get_reference_diameter(DEFAULT_REFERENCE_OBJECT) == 24.0

    def test_listing(self):
        assert "5 Shekel" in get_available_reference_objects()

    def test_unknown_coin(self):
        with pytest.raises(ValueError):
            get_reference_diameter("Doubloon")
