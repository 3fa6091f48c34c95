"""Unit tests for the facial region model and slider handling."""

import math

import numpy as np
import pytest

from facewarp.services.regions import (
    FEATURE_SLIDERS,
    NOISE_SLIDER,
    SLIDER_DEFINITIONS,
    SLIDER_IDS,
    build_region_model,
    has_transformations,
    normalize_sliders,
)


@pytest.fixture
def regions():
    """The canonical region table."""
    return build_region_model()


class TestNormalizeSliders:
    """Tests for normalize_sliders."""

    def test_fills_missing_sliders_with_zero(self):
        sliders = normalize_sliders({"eyeSize": 10})

        assert set(sliders) == set(SLIDER_IDS)
        assert sliders["eyeSize"] == 10
        assert sliders["jawline"] == 0

    def test_none_input(self):
        sliders = normalize_sliders(None)

        assert all(value == 0 for value in sliders.values())

    @pytest.mark.parametrize("junk", [None, "abc", float("nan"), float("inf"), [1], {"a": 1}, True])
    def test_junk_values_become_zero(self, junk):
        assert normalize_sliders({"noseWidth": junk})["noseWidth"] == 0

    def test_numeric_strings_are_accepted(self):
        assert normalize_sliders({"noseWidth": " 12.5 "})["noseWidth"] == 12.5

    def test_feature_sliders_are_clamped(self):
        sliders = normalize_sliders({"eyeSize": 80, "chinShape": -200})

        assert sliders["eyeSize"] == 50
        assert sliders["chinShape"] == -50

    def test_huge_integers_are_clamped(self):
        sliders = normalize_sliders({"eyeSize": 10 ** 400, "jawline": -(10 ** 400), NOISE_SLIDER: 10 ** 400})

        assert sliders["eyeSize"] == 50
        assert sliders["jawline"] == -50
        assert sliders[NOISE_SLIDER] == 30

    def test_noise_is_clamped_to_non_negative_range(self):
        assert normalize_sliders({NOISE_SLIDER: -5})[NOISE_SLIDER] == 0
        assert normalize_sliders({NOISE_SLIDER: 99})[NOISE_SLIDER] == 30

    def test_custom_limits(self):
        sliders = normalize_sliders({"eyeSize": 80, NOISE_SLIDER: 50}, slider_limit=75, noise_limit=40)

        assert sliders["eyeSize"] == 75
        assert sliders[NOISE_SLIDER] == 40

    def test_unknown_sliders_are_dropped(self):
        assert "foo" not in normalize_sliders({"foo": 3})


class TestHasTransformations:
    """Tests for has_transformations."""

    def test_all_zero(self):
        assert has_transformations(normalize_sliders({})) is False

    def test_below_threshold(self):
        assert has_transformations({"eyeSize": 0.005}) is False

    def test_any_feature_slider(self):
        assert has_transformations({"jawline": -1}) is True

    def test_noise_alone_does_not_count(self):
        assert has_transformations({NOISE_SLIDER: 20}) is False


class TestSliderDefinitions:
    """Tests for the slider metadata table."""

    def test_definitions_cover_every_slider(self):
        assert [d["id"] for d in SLIDER_DEFINITIONS] == FEATURE_SLIDERS + [NOISE_SLIDER]

    def test_defaults_are_zero(self):
        assert all(d["default"] == 0 for d in SLIDER_DEFINITIONS)


class TestRegionModel:
    """Tests for RegionModel."""

    def test_canonical_order(self, regions):
        assert regions.names == ["eyes", "eyebrows", "nose", "mouth", "face_width", "chin", "jawline"]

    def test_get_unknown_region(self, regions):
        with pytest.raises(KeyError):
            regions.get("ears")

    def test_matching_eye_point(self, regions):
        assert regions.matching(0.3, -0.1) == ["eyes"]

    def test_matching_center_of_face(self, regions):
        assert "nose" in regions.matching(0.0, 0.0)
        assert "eyes" in regions.matching(0.0, 0.0)

    def test_matching_outside_every_region(self, regions):
        assert regions.matching(-0.9, -0.9) == []

    def test_eye_displacement(self, regions):
        amp = 4.0
        dx, dy = regions.displacement(0.3, -0.1, {"eyeSize": 50}, amp)

        assert float(dx) == pytest.approx(0.5 * amp * 0.3)
        assert float(dy) == pytest.approx(0.5 * amp * -0.1)

    def test_eye_spacing_pushes_outward(self, regions):
        left_dx, _ = regions.displacement(-0.3, -0.1, {"eyeSpacing": 50}, 2.0)
        right_dx, _ = regions.displacement(0.3, -0.1, {"eyeSpacing": 50}, 2.0)

        assert float(left_dx) == pytest.approx(-1.0)
        assert float(right_dx) == pytest.approx(1.0)

    def test_zero_counts_as_left_side(self, regions):
        dx, _ = regions.displacement(0.0, -0.25, {"eyeSpacing": 50}, 2.0)

        assert float(dx) == pytest.approx(-1.0)

    def test_eyebrow_raise(self, regions):
        _, dy = regions.displacement(0.45, -0.4, {"eyebrowHeight": 20}, 5.0)

        # Eyes and face width also match but their sliders are zero
        assert float(dy) == pytest.approx(-1.0)

    def test_zero_sliders_give_zero_field(self, regions):
        xs, ys = np.meshgrid(np.linspace(-1.2, 1.2, 25), np.linspace(-1.2, 1.2, 25))
        dx, dy = regions.displacement(xs, ys, normalize_sliders({}), 10.0)

        assert not dx.any()
        assert not dy.any()

    def test_additive_composition(self, regions):
        """Overlapping regions add up exactly, whatever the order."""
        sliders = normalize_sliders({
            "eyeSize": 30,
            "eyeSpacing": -10,
            "noseWidth": 25,
            "noseLength": 15,
            "faceWidth": 40,
            "eyebrowHeight": 12,
        })
        nx, ny = 0.2, -0.3  # eyes, eyebrows, nose and face width all match
        dist = math.hypot(nx, ny)
        matched = regions.matching(nx, ny)
        assert len(matched) >= 2

        expected_x = expected_y = 0.0
        for name in matched:
            dx, dy = regions.get(name).contribution(
                np.asarray(nx), np.asarray(ny), np.asarray(dist), sliders, 3.0
            )
            expected_x += float(dx)
            expected_y += float(dy)

        forward = regions.displacement(nx, ny, sliders, 3.0)
        backward = regions.reordered(list(reversed(regions.names))).displacement(nx, ny, sliders, 3.0)

        assert float(forward[0]) == pytest.approx(expected_x, abs=1e-12)
        assert float(forward[1]) == pytest.approx(expected_y, abs=1e-12)
        assert float(backward[0]) == pytest.approx(expected_x, abs=1e-12)
        assert float(backward[1]) == pytest.approx(expected_y, abs=1e-12)

    def test_array_and_scalar_agree(self, regions):
        sliders = {"mouthWidth": 30, "chinShape": -20, "jawline": 10}
        xs = np.array([0.1, 0.3, -0.5])
        ys = np.array([0.3, 0.35, 0.5])

        dx, dy = regions.displacement(xs, ys, sliders, 2.5)

        for i in range(len(xs)):
            sx, sy = regions.displacement(xs[i], ys[i], sliders, 2.5)
            assert dx[i] == pytest.approx(float(sx))
            assert dy[i] == pytest.approx(float(sy))
