"""Tests for the grid codec, the downscale and the image helpers."""

import io
import itertools
import zipfile

import numpy as np
import pytest
from PIL import Image

from image_utils import (
    DownscaleComparison,
    bundle_shares_zip,
    combine_grids,
    compare_downscale_paths,
    downscale,
    grid_to_image,
    image_to_grid,
    image_to_shares,
    load_share_images,
    mean_absolute_error,
    parse_share_index,
    save_share_images,
    shares_to_image,
    split_grid,
)
from sss_core import (
    PRIME,
    DimensionMismatch,
    DivisionByZero,
    InvalidParameters,
    InvalidShareSet,
    SeededFieldSource,
    ThresholdScheme,
)


class TestSplitGrid:

    def test_shapes_and_range(self, scheme, secret_grid):
        shares = split_grid(secret_grid, scheme)
        assert len(shares) == 3
        for share in shares:
            assert share.shape == secret_grid.shape
            assert share.dtype == np.uint8
            assert share.max() < PRIME

    def test_outputs_are_independent_buffers(self, scheme, secret_grid):
        shares = split_grid(secret_grid, scheme)
        shares[0][0, 0] = 0
        assert not np.shares_memory(shares[0], shares[1])
        assert not np.shares_memory(shares[0], secret_grid)

    def test_sample_matches_scalar_sharing(self, fixed_source):
        scheme = ThresholdScheme(2, 3, source=fixed_source(7))
        shares = split_grid(np.array([[200, 0]]), scheme)
        assert [int(s[0, 0]) for s in shares] == [207, 214, 221]
        assert [int(s[0, 1]) for s in shares] == [7, 14, 21]

    def test_rejects_samples_outside_field(self, scheme):
        with pytest.raises(InvalidParameters):
            split_grid(np.array([[10, 251]]), scheme)

    def test_rejects_non_2d(self, scheme):
        with pytest.raises(DimensionMismatch):
            split_grid(np.zeros((2, 2, 3), dtype=np.uint8), scheme)

    def test_progress_reaches_one(self, scheme):
        seen = []
        split_grid(np.zeros((30, 40), dtype=np.uint8), scheme, progress_callback=seen.append)
        assert seen[-1] == 1.0
        assert seen == sorted(seen)
        assert len(seen) > 1

    def test_threaded_split_round_trips(self, source, secret_grid):
        scheme = ThresholdScheme(3, 5, source=source)
        seen = []
        shares = split_grid(secret_grid, scheme, progress_callback=seen.append, workers=4)
        assert seen[-1] == 1.0
        rebuilt = combine_grids([(2, shares[1]), (4, shares[3]), (5, shares[4])], scheme)
        assert np.array_equal(rebuilt, secret_grid)

    def test_empty_grid(self, scheme):
        shares = split_grid(np.zeros((0, 0), dtype=np.uint8), scheme)
        assert [s.shape for s in shares] == [(0, 0)] * 3


class TestCombineGrids:

    def test_any_k_of_n_round_trips(self, source, secret_grid):
        scheme = ThresholdScheme(3, 5, source=source)
        shares = split_grid(secret_grid, scheme)
        for subset in itertools.combinations(range(1, 6), 3):
            rebuilt = combine_grids([(x, shares[x - 1]) for x in subset], scheme)
            assert np.array_equal(rebuilt, secret_grid), subset

    def test_all_shares(self, scheme, secret_grid):
        shares = split_grid(secret_grid, scheme)
        rebuilt = combine_grids(enumerate(shares, start=1), scheme)
        assert np.array_equal(rebuilt, secret_grid)

    def test_matches_scalar_reconstruction(self, scheme, secret_grid):
        shares = split_grid(secret_grid, scheme)
        rebuilt = combine_grids([(3, shares[2]), (1, shares[0])], scheme)
        row, col = 4, 9
        points = [(3, int(shares[2][row, col])), (1, int(shares[0][row, col]))]
        assert rebuilt[row, col] == scheme.reconstruct_secret(points)

    def test_too_few_grids(self, scheme, secret_grid):
        shares = split_grid(secret_grid, scheme)
        with pytest.raises(InvalidShareSet):
            combine_grids([(1, shares[0])], scheme)
        with pytest.raises(InvalidShareSet):
            combine_grids([], scheme)

    def test_duplicate_index(self, scheme, secret_grid):
        shares = split_grid(secret_grid, scheme)
        with pytest.raises(DivisionByZero):
            combine_grids([(1, shares[0]), (1, shares[1])], scheme)

    def test_dimension_mismatch(self, scheme):
        with pytest.raises(DimensionMismatch):
            combine_grids([(1, np.zeros((4, 4))), (2, np.zeros((4, 5)))], scheme)

    def test_progress(self, scheme, secret_grid):
        shares = split_grid(secret_grid, scheme)
        seen = []
        combine_grids([(1, shares[0]), (2, shares[1])], scheme, progress_callback=seen.append)
        assert seen == [0.5, 1.0]


class TestDownscale:

    def test_single_block(self):
        assert downscale(np.array([[10, 20], [30, 40]])).tolist() == [[25]]

    def test_rounds_half_up(self):
        assert downscale(np.array([[1, 1], [0, 0]])).tolist() == [[1]]
        assert downscale(np.array([[1, 0], [0, 0]])).tolist() == [[0]]
        assert downscale(np.array([[1, 1], [1, 0]])).tolist() == [[1]]

    def test_wraps_into_field(self):
        assert downscale(np.full((2, 2), 255)).tolist() == [[255 % PRIME]]

    def test_dimension_law(self):
        grid = np.random.default_rng(1).integers(0, 256, size=(7, 5))
        out = downscale(grid)
        assert out.shape == (3, 2)
        assert out.max() < PRIME

    def test_rejects_non_2d(self):
        with pytest.raises(DimensionMismatch):
            downscale(np.zeros(8))


class TestMeanAbsoluteError:

    def test_identical(self, secret_grid):
        assert mean_absolute_error(secret_grid, secret_grid.copy()) == 0.0

    def test_value(self):
        assert mean_absolute_error(np.array([[0, 10]], dtype=np.uint8), np.array([[5, 0]], dtype=np.uint8)) == 7.5

    def test_size_mismatch(self):
        with pytest.raises(DimensionMismatch):
            mean_absolute_error(np.zeros((2, 2)), np.zeros((2, 3)))


class TestCompareDownscalePaths:

    def test_result_shapes(self, scheme, secret_grid):
        result = compare_downscale_paths(secret_grid, scheme)
        assert isinstance(result, DownscaleComparison)
        assert result.direct.shape == (6, 8)
        assert result.reconstructed.shape == (6, 8)
        assert len(result.downscaled_shares) == 3
        assert result.reconstructed.max() < PRIME
        assert result.mae >= 0.0

    def test_constant_polynomial_has_no_drift(self, source, secret_grid):
        # With k=1 every share equals the secret, so both paths coincide
        scheme = ThresholdScheme(1, 2, source=source)
        result = compare_downscale_paths(secret_grid, scheme, indices=[2])
        assert result.mae == 0.0
        assert np.array_equal(result.direct, result.reconstructed)

    def test_bad_indices(self, scheme, secret_grid):
        with pytest.raises(InvalidShareSet):
            compare_downscale_paths(secret_grid, scheme, indices=[0, 1])
        with pytest.raises(InvalidShareSet):
            compare_downscale_paths(secret_grid, scheme, indices=[3])


class TestImageConversion:

    def test_truncates_to_field(self):
        img = Image.fromarray(np.array([[0, 250], [251, 255]], dtype=np.uint8))
        assert image_to_grid(img).tolist() == [[0, 250], [250, 250]]

    def test_colour_becomes_grayscale(self):
        img = Image.new("RGB", (3, 2), (100, 100, 100))
        grid = image_to_grid(img)
        assert grid.shape == (2, 3)
        assert (grid == 100).all()

    def test_grid_to_image(self, secret_grid):
        img = grid_to_image(secret_grid)
        assert img.mode == "L"
        assert img.size == (16, 12)
        assert np.array_equal(np.array(img), secret_grid)

    def test_image_round_trip(self, secret_grid):
        original = grid_to_image(secret_grid)
        share_grids, share_images = image_to_shares(original, 3, 2, source=SeededFieldSource(1))
        assert len(share_grids) == len(share_images) == 3
        rebuilt = shares_to_image([(1, share_images[0]), (3, share_images[2])], 2)
        assert np.array_equal(np.array(rebuilt), secret_grid)

    def test_shares_to_image_needs_shares(self):
        with pytest.raises(InvalidShareSet):
            shares_to_image([], 2)


class TestShareFiles:

    @pytest.mark.parametrize("name, expected", [
        ("share_3.png", 3),
        ("share_12 (1).png", 12),
        ("output_share2.png", 2),
        ("/tmp/shares/share_4.png", 4),
        ("photo.png", None),
    ])
    def test_parse_share_index(self, name, expected):
        assert parse_share_index(name) == expected

    def test_zip_bundle(self, scheme, secret_grid):
        images = [grid_to_image(g) for g in split_grid(secret_grid, scheme)]
        with zipfile.ZipFile(io.BytesIO(bundle_shares_zip(images))) as bundle:
            assert bundle.namelist() == ["share_1.png", "share_2.png", "share_3.png"]
            with Image.open(io.BytesIO(bundle.read("share_2.png"))) as img:
                assert np.array_equal(np.array(img), np.array(images[1]))

    def test_save_and_load(self, tmp_path, scheme, secret_grid):
        images = [grid_to_image(g) for g in split_grid(secret_grid, scheme)]
        paths = save_share_images(images, prefix="output", directory=str(tmp_path))
        assert [p.rsplit("/", 1)[-1] for p in paths] == ["output_share1.png", "output_share2.png", "output_share3.png"]

        loaded = load_share_images(paths[1:])
        assert [idx for idx, _ in loaded] == [2, 3]
        assert np.array_equal(np.array(shares_to_image(loaded, 2)), secret_grid)

    def test_load_needs_index_in_name(self):
        with pytest.raises(InvalidShareSet):
            load_share_images(["photo.png"])


class TestWiderPrime:
    """GF(257) needs 9 bits per share, so grids widen beyond uint8."""

    def test_share_of_256_is_kept(self, fixed_source):
        scheme = ThresholdScheme(2, 3, prime=257, source=fixed_source(6))
        shares = split_grid(np.array([[250, 10]]), scheme)
        assert shares[0].dtype == np.uint16
        # P(X) = 250 + 6X
        assert [int(s[0, 0]) for s in shares] == [256, 5, 11]
        rebuilt = combine_grids([(1, shares[0]), (3, shares[2])], scheme)
        assert rebuilt.tolist() == [[250, 10]]

    def test_round_trip(self, source):
        scheme = ThresholdScheme(3, 4, prime=257, source=source)
        grid = np.random.default_rng(2).integers(0, 257, size=(6, 8))
        grid[0, 0] = 256
        shares = split_grid(grid, scheme)
        rebuilt = combine_grids([(2, shares[1]), (3, shares[2]), (4, shares[3])], scheme)
        assert np.array_equal(rebuilt, grid)

    def test_downscale_keeps_256(self):
        out = downscale(np.full((2, 2), 256), prime=257)
        assert out.tolist() == [[256]]

    def test_default_prime_stays_one_byte(self, scheme, secret_grid):
        assert all(s.dtype == np.uint8 for s in split_grid(secret_grid, scheme))
        assert downscale(secret_grid).dtype == np.uint8


class TestIntegralSamples:

    def test_split_rejects_fractional_grid(self, scheme):
        with pytest.raises(InvalidParameters):
            split_grid(np.array([[10.5]]), scheme)

    def test_split_rejects_float_grid_even_when_whole(self, scheme):
        with pytest.raises(InvalidParameters):
            split_grid(np.array([[10.0, 20.0]]), scheme)


class TestDownscaleProgress:

    def test_progress_reported(self, scheme):
        seen = []
        compare_downscale_paths(np.zeros((30, 40), dtype=np.uint8), scheme, progress_callback=seen.append)
        assert seen[-1] == 1.0
        assert seen == sorted(seen)
