"""Shared fixtures for the secret sharing tests."""

import numpy as np
import pytest

from sss_core import PRIME, SeededFieldSource, ThresholdScheme


class FixedSource:
    """Coefficient source that always returns the same element."""

    def __init__(self, value):
        self.value = value

    def next_field_element(self):
        return self.value


@pytest.fixture
def source():
    """Deterministic coefficient source for reproducible tests."""
    return SeededFieldSource(42)


@pytest.fixture
def scheme(source):
    """The 2-of-3 scheme over GF(251) used throughout the image pipeline."""
    return ThresholdScheme(2, 3, source=source)


@pytest.fixture
def fixed_source():
    return FixedSource


@pytest.fixture
def secret_grid():
    """A 12x16 grid of arbitrary field samples."""
    rng = np.random.default_rng(7)
    return rng.integers(0, PRIME, size=(12, 16), dtype=np.uint8)
