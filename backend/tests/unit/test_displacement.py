"""Unit tests for displacement field generation."""

import math

import numpy as np
import pytest

from facewarp.config import Settings
from facewarp.models.types import FaceBox
from facewarp.services.displacement import (
    DisplacementFieldGenerator,
    amplification_factor,
    build_warp_params,
    resolve_face_box,
    transition_factor,
)
from facewarp.services.regions import build_region_model, normalize_sliders


@pytest.fixture
def settings():
    """Default settings, independent of the environment cache."""
    return Settings()


@pytest.fixture
def generator(settings):
    """Generator for a full-image face box on a 100x100 image."""
    sliders = normalize_sliders({"eyeSize": 50, "mouthWidth": -30, "faceWidth": 20})
    params = build_warp_params(100, 100, FaceBox(0, 0, 100, 100), sliders, settings=settings)
    return DisplacementFieldGenerator(params, build_region_model())


class TestTransitionFactor:
    """Tests for the falloff curve."""

    def test_one_at_inner_edge(self):
        assert transition_factor(0.85, 0.85, 1.1) == 1.0

    def test_zero_at_max_influence(self):
        assert transition_factor(1.1, 0.85, 1.1) == 0.0

    def test_one_inside(self):
        assert transition_factor(0.0, 0.85, 1.1) == 1.0

    def test_zero_outside(self):
        assert transition_factor(5.0, 0.85, 1.1) == 0.0

    def test_half_way_is_half(self):
        # The septic smoothstep is symmetric around the midpoint
        assert transition_factor(0.975, 0.85, 1.1) == pytest.approx(0.5)

    def test_monotonic_between_edges(self):
        samples = np.linspace(0.85, 1.1, 26)
        values = transition_factor(samples, 0.85, 1.1)

        assert values[0] == 1.0
        assert values[-1] == 0.0
        assert np.all(np.diff(values) <= 0)
        assert np.all((values >= 0) & (values <= 1))

    def test_returns_float_for_scalars(self):
        assert isinstance(transition_factor(0.9, 0.85, 1.1), float)


class TestFaceBoxResolution:
    """Tests for resolve_face_box."""

    def test_valid_box_is_kept(self, settings):
        box = FaceBox(10, 20, 30, 40)

        assert resolve_face_box(box, 100, 100, settings) == (box, False)

    @pytest.mark.parametrize(
        "box",
        [None, FaceBox(0, 0, 0, 10), FaceBox(0, 0, 10, -5), FaceBox(float("nan"), 0, 10, 10)],
    )
    def test_degenerate_box_gets_centered_default(self, settings, box):
        resolved, is_default = resolve_face_box(box, 200, 100, settings)

        assert is_default is True
        assert resolved.width == pytest.approx(160)
        assert resolved.height == pytest.approx(90)
        assert resolved.center() == pytest.approx((100, 50))


class TestWarpParams:
    """Tests for build_warp_params and amplification."""

    def test_amplification_at_reference_size(self, settings):
        assert amplification_factor(256, 256, settings) == pytest.approx(10.0)

    def test_amplification_scales_with_resolution(self, settings):
        assert amplification_factor(512, 512, settings) == pytest.approx(20.0)

    def test_params_from_face_box(self, settings):
        sliders = normalize_sliders({"noiseLevel": 12})
        params = build_warp_params(200, 100, FaceBox(40, 10, 80, 60), sliders, seed=7, settings=settings)

        assert params.center_x == 80
        assert params.center_y == 40
        assert params.half_extent_x == pytest.approx(40 * 1.25)
        assert params.half_extent_y == pytest.approx(30 * 1.25)
        assert params.inner_edge == 0.85
        assert params.max_influence == 1.1
        assert params.noise_level == 12
        assert params.seed == 7
        assert params.safety_margin == 3
        assert params.to_dict()["sliders"]["noiseLevel"] == 12


class TestDisplacementFieldGenerator:
    """Tests for DisplacementFieldGenerator."""

    def test_normalize_center(self, generator):
        nx, ny, dist = generator.normalize(50, 50)

        assert float(nx) == 0.0
        assert float(ny) == 0.0
        assert float(dist) == 0.0

    def test_zero_beyond_max_influence(self, generator):
        p = generator.params
        # Points well inside the image but outside the influence ellipse
        xs = np.array([0, 99, 0, 99])
        ys = np.array([0, 0, 99, 99])
        dx, dy, dist = generator.displacement(xs, ys)

        assert np.all(dist >= p.max_influence)
        assert not dx.any()
        assert not dy.any()

    def test_field_matches_pointwise(self, generator):
        dx, dy, _ = generator.field(100, 30, 35)

        assert dx.shape == (5, 100)
        for y, x in [(30, 40), (32, 60), (34, 10)]:
            px, py = generator.at(x, y)
            assert dx[y - 30, x] == pytest.approx(px)
            assert dy[y - 30, x] == pytest.approx(py)

    def test_eye_region_moves(self, generator):
        # nx = 0.3, ny = -0.1 lies in the eye region only
        p = generator.params
        x = p.center_x + 0.3 * p.half_extent_x
        y = p.center_y - 0.1 * p.half_extent_y
        dx, dy = generator.at(x, y)

        amp = p.amplification
        assert dx == pytest.approx(0.5 * amp * 0.3)
        assert dy == pytest.approx(0.5 * amp * -0.1)

    def test_sample_grid_shape(self, generator):
        xs, ys, dx, dy = generator.sample_grid(100, 100, 20)

        assert xs.shape == ys.shape == dx.shape == dy.shape == (5, 5)
        assert xs[0, 0] == 10
        assert ys[0, 0] == 10

    def test_falloff_applies_in_transition_band(self, settings):
        sliders = normalize_sliders({"faceWidth": 50})
        params = build_warp_params(100, 100, FaceBox(0, 0, 100, 100), sliders, settings=settings)
        gen = DisplacementFieldGenerator(params, build_region_model())

        # dist = 1.0, between inner edge and max influence, face width region only
        x = params.center_x + params.half_extent_x
        dx, _ = gen.at(x, params.center_y)

        expected = 0.5 * params.amplification * 1.0 * transition_factor(1.0, 0.85, 1.1)
        assert dx == pytest.approx(expected)
        assert 0 < dx < 0.5 * params.amplification
        assert math.isfinite(dx)
