"""Unit tests for post-warp effects."""

from unittest.mock import patch

import cv2
import numpy as np
import pytest

from facewarp.config import Settings
from facewarp.models.types import EffectOptions, FaceBox
from facewarp.services.effects import (
    EffectPostProcessor,
    blur_radius_for,
    overlay_mask,
    pixel_block_for,
    pixelate_region,
)


@pytest.fixture
def processor():
    """Effect processor with default limits."""
    return EffectPostProcessor(Settings())


@pytest.fixture
def checkerboard():
    """64x64 RGBA checkerboard of 1px black and white cells."""
    ys, xs = np.mgrid[0:64, 0:64]
    image = np.zeros((64, 64, 4), dtype=np.uint8)
    white = (xs + ys) % 2 == 0
    image[white, :3] = 255
    image[:, :, 3] = 255
    return image


class TestIntensityMapping:
    """Tests for the intensity-to-parameter maps."""

    def test_blur_radius_is_linear_and_capped(self):
        assert blur_radius_for(0, 30) == 0
        assert blur_radius_for(50, 30) == 15
        assert blur_radius_for(100, 30) == 30
        assert blur_radius_for(1000, 30) == 30

    def test_pixel_block_is_linear_and_bounded(self):
        assert pixel_block_for(1, 32) == 2
        assert pixel_block_for(50, 32) == 16
        assert pixel_block_for(100, 32) == 32
        assert pixel_block_for(500, 32) == 32


class TestPixelate:
    """Tests for pixelate_region."""

    @pytest.mark.parametrize("block", [2, 4, 8])
    def test_checkerboard_blocks_are_uniform_averages(self, checkerboard, block):
        source = checkerboard.copy()
        result = pixelate_region(checkerboard.copy(), (8, 8, 40, 40), block)

        for by in range(8, 40, block):
            for bx in range(8, 40, block):
                tile = result[by:by + block, bx:bx + block]
                expected = np.floor(source[by:by + block, bx:bx + block].reshape(-1, 4).mean(axis=0) + 0.5)
                assert (tile == tile[0, 0]).all()
                np.testing.assert_array_equal(tile[0, 0], expected.astype(np.uint8))

        # Outside the region nothing changes
        np.testing.assert_array_equal(result[:8], source[:8])
        np.testing.assert_array_equal(result[40:], source[40:])

    def test_uneven_blocks_at_region_edge(self):
        image = np.zeros((10, 10, 4), dtype=np.uint8)
        image[:, :, 0] = np.arange(10)[None, :] * 10
        image[:, :, 3] = 255

        result = pixelate_region(image.copy(), (0, 0, 5, 5), 4)

        # Last column block covers only column 4
        assert (result[0:4, 4, 0] == 40).all()
        assert (result[0:4, 0:4, 0] == 15).all()

    def test_odd_block_on_checkerboard_rounds_half_up(self, checkerboard):
        result = pixelate_region(checkerboard.copy(), (0, 0, 3, 3), 3)

        # Five white cells out of nine: 5 * 255 / 9 = 141.67
        assert result[0, 0, 0] == 142


class TestEffectPostProcessor:
    """Tests for EffectPostProcessor.apply."""

    def test_none_is_noop(self, processor, checkerboard):
        result = processor.apply(checkerboard, FaceBox(0, 0, 10, 10), EffectOptions())

        assert result is checkerboard

    def test_zero_intensity_is_noop(self, processor, checkerboard):
        result = processor.apply(checkerboard, FaceBox(0, 0, 10, 10), EffectOptions(type="blur", intensity=0))

        assert result is checkerboard

    def test_does_not_modify_input(self, processor, checkerboard):
        original = checkerboard.copy()
        processor.apply(checkerboard, FaceBox(0, 0, 32, 32), EffectOptions(type="pixelate", intensity=50))

        np.testing.assert_array_equal(checkerboard, original)

    def test_blur_confined_to_box(self, processor, checkerboard):
        result = processor.apply(checkerboard, FaceBox(16, 16, 32, 32), EffectOptions(type="blur", intensity=50))

        np.testing.assert_array_equal(result[:16], checkerboard[:16])
        np.testing.assert_array_equal(result[:, 48:], checkerboard[:, 48:])
        inner = result[24:40, 24:40, :3]
        # A checkerboard blurs towards mid gray
        assert inner.min() > 60
        assert inner.max() < 195
        np.testing.assert_array_equal(result[:, :, 3], checkerboard[:, :, 3])

    def test_box_outside_image_is_noop(self, processor, checkerboard):
        result = processor.apply(checkerboard, FaceBox(100, 100, 10, 10), EffectOptions(type="blur", intensity=80))

        assert result is checkerboard

    def test_box_is_clipped_to_image(self, processor, checkerboard):
        result = processor.apply(checkerboard, FaceBox(-10, -10, 30, 30), EffectOptions(type="pixelate", intensity=25))

        np.testing.assert_array_equal(result[20:], checkerboard[20:])
        assert not np.array_equal(result[:20, :20], checkerboard[:20, :20])

    def test_mask_without_image_is_noop(self, processor, checkerboard):
        result = processor.apply(checkerboard, FaceBox(0, 0, 10, 10), EffectOptions(type="mask", intensity=50))

        assert result is checkerboard

    def test_mask_overlay(self, processor):
        image = np.zeros((50, 50, 4), dtype=np.uint8)
        image[:, :, 3] = 255
        mask = np.zeros((4, 4, 4), dtype=np.uint8)
        mask[:, :, 2] = 200
        mask[:, :, 3] = 255

        result = processor.apply(
            image,
            FaceBox(10, 10, 20, 20),
            EffectOptions(type="mask", intensity=100, mask_image=mask, mask_position=(0.5, 0.0), mask_scale=0.5),
        )

        # 10x10 mask placed at x = 10 + 0.5 * 20 = 20, y = 10
        assert result[15, 25, 2] == 180
        assert result[15, 15, 2] == 0
        assert result[25, 25, 2] == 0


class TestOverlayMask:
    """Tests for overlay_mask."""

    def test_mask_alpha_scales_opacity(self):
        image = np.full((20, 20, 4), 100, dtype=np.uint8)
        mask = np.zeros((20, 20, 4), dtype=np.uint8)
        mask[:, :, :3] = 200
        mask[:, :, 3] = 0

        overlay_mask(image, mask, FaceBox(0, 0, 20, 20), opacity=0.9)

        assert (image[:, :, :3] == 100).all()

    def test_partially_offscreen_mask(self):
        image = np.zeros((20, 20, 4), dtype=np.uint8)
        mask = np.full((10, 10, 4), 255, dtype=np.uint8)

        overlay_mask(image, mask, FaceBox(15, 15, 10, 10), opacity=1.0)

        assert (image[15:, 15:, :3] == 255).all()
        assert (image[:15, :15, :3] == 0).all()

    def test_rgb_mask_is_accepted(self):
        image = np.zeros((10, 10, 4), dtype=np.uint8)
        mask = np.full((5, 5, 3), 100, dtype=np.uint8)

        overlay_mask(image, mask, FaceBox(0, 0, 10, 10), opacity=0.5)

        assert image[5, 5, 0] == 50

    def test_huge_scale_only_renders_visible_part(self):
        image = np.zeros((200, 200, 4), dtype=np.uint8)
        mask = np.full((10, 10, 4), 255, dtype=np.uint8)

        with patch("facewarp.services.effects.cv2.warpAffine", wraps=cv2.warpAffine) as warp_affine:
            overlay_mask(image, mask, FaceBox(50, 50, 100, 100), scale=1e6, opacity=1.0)

        width, height = warp_affine.call_args.args[2]
        assert width * height <= 200 * 200
        assert (image[50:, 50:, :3] == 255).all()
        assert (image[:50, :, :3] == 0).all()

    def test_visible_crop_matches_full_placement(self):
        image = np.zeros((20, 20, 4), dtype=np.uint8)
        mask = np.zeros((2, 2, 4), dtype=np.uint8)
        mask[:, 0, :3] = 255
        mask[:, :, 3] = 255

        overlay_mask(image, mask, FaceBox(10, 0, 20, 20), opacity=1.0)

        # Left half of the mask is white and lands on columns 10..19
        assert (image[:, 10:15, :3] == 255).all()
        assert (image[:, :10, :3] == 0).all()

    @pytest.mark.parametrize("scale", [0.0, -1.0, float("nan"), float("inf")])
    def test_unusable_scale_is_noop(self, scale):
        image = np.zeros((10, 10, 4), dtype=np.uint8)
        mask = np.full((5, 5, 4), 255, dtype=np.uint8)

        overlay_mask(image, mask, FaceBox(0, 0, 10, 10), scale=scale)

        assert (image == 0).all()


class TestMaskScaleLimit:
    """The processor caps the mask scale."""

    def test_scale_is_clamped_to_setting(self):
        processor = EffectPostProcessor(Settings(effect_max_mask_scale=2.0))
        image = np.zeros((200, 200, 4), dtype=np.uint8)
        image[:, :, 3] = 255
        mask = np.full((10, 10, 4), 255, dtype=np.uint8)

        def run(scale):
            options = EffectOptions(type="mask", intensity=100, mask_image=mask, mask_scale=scale)
            return processor.apply(image, FaceBox(20, 20, 40, 40), options)

        huge = run(500.0)

        np.testing.assert_array_equal(huge, run(2.0))
        # 40 * 2 = 80 pixels wide from x = 20
        assert huge[30, 99, 0] > 200
        assert huge[30, 100, 0] == 0
