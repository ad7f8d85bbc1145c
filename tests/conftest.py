"""
pytest configuration and shared fixtures.
"""

import numpy as np
import pytest


@pytest.fixture
def rng():
    """Seeded random number generator for reproducible tests."""
    return np.random.default_rng(42)


@pytest.fixture
def collinear_data(rng):
    """Design with perfect collinearity (should fail)."""
    n = 50
    x1 = rng.standard_normal(n)
    x2 = rng.standard_normal(n)
    X = np.column_stack([x1, x2, x1 + x2])
    y = rng.standard_normal(n)
    return X, y
