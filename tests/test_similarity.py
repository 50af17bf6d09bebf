from __future__ import annotations

import numpy as np
import pytest

from roe.errors import DimensionMismatchError, InvalidArgumentError
from roe.similarity import clamp, cosine_similarity


def test_identical_and_opposite_vectors() -> None:
    assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)


def test_dimension_mismatch_is_a_typed_invalid_argument() -> None:
    with pytest.raises(DimensionMismatchError) as info:
        cosine_similarity([1.0, 2.0], [1.0, 2.0, 3.0])
    assert isinstance(info.value, InvalidArgumentError)
    assert (info.value.left, info.value.right) == (2, 3)


def test_zero_vector_scores_zero() -> None:
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0


def test_random_vectors_stay_in_range() -> None:
    rng = np.random.default_rng(7)
    for _ in range(200):
        a = rng.normal(size=16)
        b = rng.normal(size=16)
        assert -1.0 <= cosine_similarity(a, b) <= 1.0


def test_clamp_swapped_bounds() -> None:
    assert clamp(2.5, 1.0, 0.0) == 1.0
    assert clamp(-0.2) == 0.0
