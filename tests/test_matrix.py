import numpy as np
import pytest

from gradstep.errors import DimensionError
from gradstep.matrix import Matrix


def test_multiply():
    a = Matrix(2, 3, [[1, 2, 3], [4, 5, 6]])
    b = Matrix(3, 2, [[7, 8], [9, 10], [11, 12]])
    assert a.multiply(b).data == [[58, 64], [139, 154]]


def test_multiply_shape_error_names_both_shapes():
    a = Matrix(2, 3, [[1, 2, 3], [4, 5, 6]])
    with pytest.raises(DimensionError, match="2x3 with 2x3"):
        a.multiply(a)


def test_transpose():
    t = Matrix(2, 3, [[1, 2, 3], [4, 5, 6]]).transpose()
    assert (t.rows, t.cols) == (3, 2)
    assert t.get(0, 1) == 4
    assert t.get(2, 0) == 3


def test_hadamard():
    e = Matrix(2, 2, [[1, 2], [3, 4]])
    f = Matrix(2, 2, [[5, 6], [7, 8]])
    assert e.hadamard(f).data == [[5, 12], [21, 32]]
    with pytest.raises(DimensionError, match="2x2 with 1x2"):
        e.hadamard(Matrix(1, 2))


def test_add_and_subtract():
    m = Matrix(1, 2, [[1, 2]])
    assert m.add(m).data == [[2, 4]]
    assert m.add(1.5).data == [[2.5, 3.5]]
    assert m.subtract(m).data == [[0, 0]]
    assert m.subtract(1).data == [[0, 1]]
    assert m.scale(-2).data == [[-2, -4]]
    with pytest.raises(DimensionError):
        m.add(Matrix(2, 1))


def test_operations_do_not_alias_inputs():
    m = Matrix(2, 2, [[1, 2], [3, 4]])
    for result in (m.copy(), m.add(0), m.scale(1), m.transpose().transpose(), m.map(lambda v, r, c: v)):
        result.set(0, 0, 100)
        assert m.get(0, 0) == 1


def test_constructor_copies_data():
    rows = [[1.0, 2.0]]
    m = Matrix(1, 2, rows)
    rows[0][0] = 9.0
    assert m.get(0, 0) == 1.0


def test_constructor_validates_shape():
    with pytest.raises(DimensionError):
        Matrix(2, 2, [[1, 2, 3], [4, 5, 6]])
    with pytest.raises(DimensionError):
        Matrix(2, 2, [[1, 2], [3]])


def test_zero_filled_by_default():
    assert Matrix(2, 3).data == [[0, 0, 0], [0, 0, 0]]
    assert Matrix.ones(1, 2).data == [[1, 1]]


def test_from_array():
    column = Matrix.from_array([1, 2, 3])
    row = Matrix.from_array([1, 2, 3], as_column=False)
    assert column.shape == (3, 1)
    assert row.shape == (1, 3)
    assert column.to_array() == [1, 2, 3]


def test_xavier_limits():
    rng = np.random.default_rng(0)
    m = Matrix.random(4, 2, rng=rng)
    limit = np.sqrt(6 / 6)
    assert m.shape == (4, 2)
    assert all(-limit <= v <= limit for v in m.to_array())

    scaled = Matrix.random(10, 10, scale=0.1, rng=rng)
    assert max(abs(v) for v in scaled.to_array()) <= 0.1 * np.sqrt(6 / 20)


def test_map_passes_indices():
    m = Matrix(2, 2).map(lambda v, row, col: 10 * row + col)
    assert m.data == [[0, 1], [10, 11]]


def test_row_sums_and_broadcast():
    m = Matrix(2, 3, [[1, 2, 3], [4, 5, 6]])
    assert m.row_sums().data == [[6], [15]]
    shifted = m.add_column_vector(Matrix.from_array([1, -1]))
    assert shifted.data == [[2, 3, 4], [3, 4, 5]]
    with pytest.raises(DimensionError):
        m.add_column_vector(Matrix.from_array([1, 2, 3]))


def test_frobenius_norm():
    assert Matrix(1, 2, [[3, 4]]).frobenius_norm() == 5.0


def test_argmax_rows_per_column():
    m = Matrix(3, 2, [[0.1, 0.5], [0.7, 0.5], [0.2, 0.0]])
    assert m.argmax_rows() == [1, 0]


def test_set_mutates_in_place():
    m = Matrix.zeros(2, 2)
    m.set(1, 0, 3.5)
    assert m.get(1, 0) == 3.5
    assert m == Matrix(2, 2, [[0, 0], [3.5, 0]])
