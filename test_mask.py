"""QR mask generation and placement validation."""

import numpy as np
import pytest

from alpha_qr import (
    DimensionError, EncodingCapacityError, PlacementValidator, QRMaskGenerator,
)


def test_mask_is_square_rgba():
    mask = QRMaskGenerator().generate('hello', 100)
    assert mask.mode == 'RGBA'
    assert mask.size == (100, 100)


@pytest.mark.parametrize('payload, size', [
    ('hello', 45),
    ('hello', 23),
    ('x' * 40, 60),
    ('https://example.com', 137),
])
def test_mask_side_matches_requested_size(payload, size):
    assert QRMaskGenerator().generate(payload, size).size == (size, size)


def test_mask_alpha_is_binary():
    pixels = np.array(QRMaskGenerator().generate('https://example.com', 120))
    assert set(np.unique(pixels[..., 3]).tolist()) == {0, 255}
    # Modules are black, background is white
    modules = pixels[..., 3] == 255
    assert (pixels[modules][:, :3] == 0).all()
    assert (pixels[~modules][:, :3] == 255).all()


def test_mask_border_and_finder_pattern():
    # 23 modules scaled to 100px, about 4.35px each
    mask = QRMaskGenerator().generate('hello', 100)
    assert mask.getpixel((0, 0))[3] == 0      # quiet zone
    assert mask.getpixel((6, 6))[3] == 255    # finder pattern corner
    assert mask.getpixel((10, 10))[3] == 0    # finder ring gap


def test_matrix_includes_border():
    matrix = QRMaskGenerator(border=2).matrix('hello')
    assert matrix.shape == (25, 25)
    assert not matrix[0].any()
    assert not matrix[:, -1].any()


def test_larger_payload_grows_version():
    small = QRMaskGenerator().matrix('a')
    large = QRMaskGenerator().matrix('a' * 200)
    assert large.shape[0] > small.shape[0]


def test_empty_payload_rejected():
    with pytest.raises(ValueError):
        QRMaskGenerator().generate('', 100)


def test_fixed_version_capacity():
    with pytest.raises(EncodingCapacityError):
        QRMaskGenerator(version=1).generate('x' * 100, 200)


def test_payload_beyond_largest_version():
    with pytest.raises(EncodingCapacityError):
        QRMaskGenerator(error_correction='H').generate('x' * 5000, 1000)


def test_size_smaller_than_module_grid():
    with pytest.raises(EncodingCapacityError):
        QRMaskGenerator().generate('hello', 20)


def test_unknown_error_correction():
    with pytest.raises(ValueError):
        QRMaskGenerator(error_correction='X')


def test_carrier_minimum():
    validator = PlacementValidator()
    validator.check_carrier(40, 40)
    with pytest.raises(DimensionError):
        validator.check_carrier(39, 400)
    with pytest.raises(DimensionError):
        validator.check_carrier(400, 10)


def test_mask_size_clamped_to_carrier():
    validator = PlacementValidator()
    assert validator.mask_size(640, 480, 100) == 100
    assert validator.mask_size(640, 480, 1000) == 480
    assert validator.mask_size(60, 480, 100) == 60


def test_mask_size_minimum():
    with pytest.raises(DimensionError):
        PlacementValidator().mask_size(640, 480, 29)
    assert PlacementValidator(min_mask=10).mask_size(640, 480, 10) == 10


@pytest.mark.parametrize('left, top, expected', [
    (10, 20, (10, 20)),
    (-5, -5, (0, 0)),
    (500, 500, (100, 50)),
    (100, 50, (100, 50)),
])
def test_clamp_placement(left, top, expected):
    assert PlacementValidator().clamp(200, 150, 100, 100, left, top) == expected


def test_clamp_oversized_mask_pins_to_origin():
    assert PlacementValidator().clamp(50, 50, 80, 80, 10, 10) == (0, 0)


def test_version_overflow_is_capacity_error():
    with pytest.raises(EncodingCapacityError):
        QRMaskGenerator(error_correction='H').matrix('x' * 3000)
