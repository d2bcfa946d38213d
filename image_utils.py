import io
import logging
import os
import re
import zipfile
from collections import namedtuple
from concurrent.futures import ThreadPoolExecutor, as_completed

import numpy as np
from PIL import Image

from sss_core import (
    PRIME,
    DimensionMismatch,
    InvalidParameters,
    InvalidShareSet,
    ThresholdScheme,
)

logger = logging.getLogger(__name__)

# Number of samples between progress updates
PROGRESS_INTERVAL = 500

# Matches "share_3.png", "share_3 (1).png" and "output_share3.png"
SHARE_NAME_PATTERN = re.compile(r"share_?(\d+)")

DownscaleComparison = namedtuple(
    "DownscaleComparison", ["direct", "reconstructed", "downscaled_shares", "mae"]
)


def _as_grid(grid, name="grid"):
    arr = np.asarray(grid)
    if arr.ndim != 2:
        raise DimensionMismatch(f"{name} must be 2D, got shape {arr.shape}")
    return arr


def _grid_dtype(prime):
    # Smallest unsigned type holding every field element
    return np.min_scalar_type(prime - 1)


def _split_band(values, start_row, share_grids, scheme, on_progress=None):
    """Share every sample of a band of rows into share_grids, starting at start_row."""
    processed = 0
    for r, row in enumerate(values):
        for c, value in enumerate(row):
            for share_grid, point in zip(share_grids, scheme.generate_shares(value)):
                share_grid[start_row + r, c] = point.y
            processed += 1
            if on_progress and processed % PROGRESS_INTERVAL == 0:
                on_progress(processed)
    return len(values)


def split_grid(secret_grid, scheme, progress_callback=None, workers=1):
    """
    Split a grid of samples into n share grids

    Args:
        secret_grid: 2D array of samples, each in [0, scheme.prime)
        scheme: ThresholdScheme used for every sample
        progress_callback: Function to call with progress updates (0.0-1.0)
        workers: Number of threads; rows are divided into contiguous bands

    Returns:
        List of n grids (uint8 for primes up to 256); grid i holds the shares for x = i + 1
    """
    grid = _as_grid(secret_grid, "secret grid")
    if not np.issubdtype(grid.dtype, np.integer):
        raise InvalidParameters(f"Samples must be integers, got dtype {grid.dtype}")
    if grid.size and (grid.min() < 0 or grid.max() >= scheme.prime):
        raise InvalidParameters(
            f"Samples must be in [0, {scheme.prime - 1}], got range [{grid.min()}, {grid.max()}]"
        )

    height, width = grid.shape
    total = height * width
    share_grids = [np.zeros((height, width), dtype=_grid_dtype(scheme.prime)) for _ in range(scheme.n)]
    values = grid.tolist()
    logger.info("Splitting %dx%d grid into %d shares (k=%d)", width, height, scheme.n, scheme.k)

    if workers <= 1 or height < 2:
        def on_progress(done):
            progress_callback(done / total)

        _split_band(values, 0, share_grids, scheme, on_progress if progress_callback else None)
    else:
        band = max(1, -(-height // workers))
        done_rows = 0
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {
                executor.submit(_split_band, values[start:start + band], start, share_grids, scheme): start
                for start in range(0, height, band)
            }
            for future in as_completed(futures):
                done_rows += future.result()
                logger.debug("Band starting at row %d finished", futures[future])
                if progress_callback:
                    progress_callback(done_rows / height)

    if progress_callback:
        progress_callback(1.0)
    return share_grids


def combine_grids(indexed_grids, scheme, progress_callback=None):
    """
    Reconstruct the secret grid from k or more share grids

    Args:
        indexed_grids: Iterable of (x, grid) pairs, x being the share index
        scheme: ThresholdScheme the shares were generated with
        progress_callback: Function to call with progress updates (0.0-1.0)

    Returns:
        Grid of reconstructed samples in [0, scheme.prime)
    """
    indexed_grids = list(indexed_grids)
    if not indexed_grids:
        raise InvalidShareSet("No shares provided")

    xs = [int(x) for x, _ in indexed_grids]
    grids = [_as_grid(grid, f"share grid {x}") for x, grid in indexed_grids]
    shape = grids[0].shape
    for x, grid in zip(xs, grids):
        if grid.shape != shape:
            raise DimensionMismatch(f"Share {x} has shape {grid.shape}, expected {shape}")

    # The basis only depends on the x-indices, so it is shared by every sample
    basis = scheme.lagrange_coefficients(xs)
    p = scheme.prime
    logger.info("Combining %d share grids of shape %s (indices %s)", len(grids), shape, xs)

    acc = np.zeros(shape, dtype=np.int64)
    for step, (weight, grid) in enumerate(zip(basis, grids), start=1):
        acc = (acc + (grid.astype(np.int64) % p) * weight) % p
        if progress_callback:
            progress_callback(step / len(grids))

    return acc.astype(_grid_dtype(p))


def downscale(grid, prime=PRIME):
    """
    Halve both dimensions by averaging 2x2 blocks.

    Each block becomes round((a + b + c + d) / 4) mod prime, rounding halves
    up. An odd trailing row or column is dropped.
    """
    arr = _as_grid(grid)
    height, width = arr.shape[0] // 2, arr.shape[1] // 2
    blocks = arr[: height * 2, : width * 2].astype(np.int64)
    total = blocks[0::2, 0::2] + blocks[0::2, 1::2] + blocks[1::2, 0::2] + blocks[1::2, 1::2]
    return (((total + 2) // 4) % prime).astype(_grid_dtype(prime))


def mean_absolute_error(a, b):
    """Sample-wise mean absolute difference between two grids of equal shape."""
    a = _as_grid(a, "first grid")
    b = _as_grid(b, "second grid")
    if a.shape != b.shape:
        raise DimensionMismatch(f"Size mismatch: {a.shape} vs {b.shape}")
    if a.size == 0:
        return 0.0
    return float(np.mean(np.abs(a.astype(np.int64) - b.astype(np.int64))))


def compare_downscale_paths(secret_grid, scheme, indices=None, workers=1, progress_callback=None):
    """
    Measure how far downscaling the shares drifts from downscaling the secret.

    Downscales the secret directly, then shares the full-resolution secret,
    downscales every share and reconstructs from the shares at `indices`
    (default 1..k). Averaging divides by 4 outside the field, so the two
    results usually differ.

    Returns:
        DownscaleComparison(direct, reconstructed, downscaled_shares, mae)
    """
    if indices is None:
        indices = range(1, scheme.k + 1)
    indices = [int(x) for x in indices]
    # Reject bad indices before doing any sharing work
    scheme.lagrange_coefficients(indices)

    grid = _as_grid(secret_grid, "secret grid")
    direct = downscale(grid, scheme.prime)
    share_grids = split_grid(grid, scheme, progress_callback=progress_callback, workers=workers)
    downscaled_shares = [downscale(share, scheme.prime) for share in share_grids]
    reconstructed = combine_grids([(x, downscaled_shares[x - 1]) for x in indices], scheme)

    mae = mean_absolute_error(direct, reconstructed)
    logger.info("MAE between direct and reconstructed downscale = %.4f", mae)
    return DownscaleComparison(direct, reconstructed, downscaled_shares, mae)


def image_to_grid(image, prime=PRIME):
    """
    Convert a PIL image into a grid of field samples

    Colour images are reduced to grayscale. Samples above prime - 1 are
    truncated so every sample is a valid secret (lossy for 251-255).
    """
    if image.mode != "L":
        image = image.convert("L")
    grid = np.array(image, dtype=np.uint8)
    return np.minimum(grid, prime - 1).astype(np.uint8)


def grid_to_image(grid):
    """Encode a grid as a single-channel grayscale PIL image."""
    return Image.fromarray(np.asarray(_as_grid(grid), dtype=np.uint8))


def image_to_shares(image, num_shares, threshold, progress_callback=None, source=None, workers=1):
    """
    Convert an image to Shamir's Secret Sharing shares

    Args:
        image: PIL Image object
        num_shares: Total number of shares to generate
        threshold: Minimum number of shares needed to reconstruct
        progress_callback: Function to call with progress updates (0.0-1.0)
        source: Optional coefficient source, see sss_core.SeededFieldSource
        workers: Number of threads used for sharing

    Returns:
        tuple: (share_grids, share_images)
            - share_grids: List of uint8 grids, one per share
            - share_images: List of grayscale PIL Images, one per share
    """
    scheme = ThresholdScheme(threshold, num_shares, source=source)
    grid = image_to_grid(image, scheme.prime)
    share_grids = split_grid(grid, scheme, progress_callback=progress_callback, workers=workers)
    return share_grids, [grid_to_image(g) for g in share_grids]


def shares_to_image(shares, threshold, progress_callback=None):
    """
    Reconstruct an image from its shares

    Args:
        shares: List of tuples (index, PIL Image)
        threshold: Minimum number of shares the image was split with
        progress_callback: Function to call with progress updates (0.0-1.0)

    Returns:
        PIL Image: Reconstructed grayscale image
    """
    if not shares:
        raise InvalidShareSet("No shares provided")

    highest = max(int(idx) for idx, _ in shares)
    scheme = ThresholdScheme(threshold, max(highest, threshold))
    indexed_grids = [(idx, image_to_grid(img, scheme.prime)) for idx, img in shares]
    return grid_to_image(combine_grids(indexed_grids, scheme, progress_callback))


def parse_share_index(filename):
    """Extract the share index from a filename such as 'share_3.png'; None if absent."""
    match = SHARE_NAME_PATTERN.search(os.path.basename(filename))
    return int(match.group(1)) if match else None


def bundle_shares_zip(share_images):
    """Pack share images into an in-memory ZIP as share_1.png, share_2.png, ..."""
    zip_buffer = io.BytesIO()
    with zipfile.ZipFile(zip_buffer, "w") as zip_file:
        for i, share_img in enumerate(share_images, start=1):
            img_bytes = io.BytesIO()
            share_img.save(img_bytes, format="PNG")
            zip_file.writestr(f"share_{i}.png", img_bytes.getvalue())
    return zip_buffer.getvalue()


def save_share_images(share_images, prefix="output", directory="."):
    """Write shares as <prefix>_share<i>.png and return their paths."""
    os.makedirs(directory, exist_ok=True)
    paths = []
    for i, share_img in enumerate(share_images, start=1):
        path = os.path.join(directory, f"{prefix}_share{i}.png")
        share_img.save(path, format="PNG")
        paths.append(path)
    logger.info("Saved %d shares under %s", len(paths), directory)
    return paths


def load_share_images(paths):
    """Load share files as (index, PIL Image) pairs; the index comes from the filename."""
    shares = []
    for path in paths:
        idx = parse_share_index(path)
        if idx is None:
            raise InvalidShareSet(f"Cannot tell the share index from filename: {path}")
        with Image.open(path) as img:
            shares.append((idx, img.copy()))
    return shares
