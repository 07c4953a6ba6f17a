"""
Dense 2-D matrix used by the batched trainer.

Storage is a float64 numpy array. Every operation returns a new Matrix and
never aliases the storage of its operands; only set() mutates in place.
Shapes are checked up front and a mismatch raises DimensionError naming both
shapes.
"""
import numpy as np

from gradstep.errors import DimensionError


class Matrix:
    """
    rows x cols grid of real numbers.

    Column vectors (rows x 1) are the convention for samples: a batch of m
    samples with n features is an n x m matrix.
    """

    def __init__(self, rows, cols, data=None):
        if data is None:
            values = np.zeros((rows, cols))
        else:
            try:
                values = np.array(data, dtype=float)
            except ValueError as err:
                raise DimensionError(f"Rows of the data must all have {cols} elements") from err
            if values.shape != (rows, cols):
                shape = "x".join(str(n) for n in values.shape)
                raise DimensionError(f"Data dimensions {shape} don't match {rows}x{cols}")
        self._values = values

    @classmethod
    def _wrap(cls, values):
        matrix = cls.__new__(cls)
        matrix._values = values
        return matrix

    @classmethod
    def from_array(cls, values, as_column=True):
        """Column vector (default) or row vector from a flat sequence."""
        flat = np.array(values, dtype=float).reshape(-1)
        return cls._wrap(flat.reshape(-1, 1) if as_column else flat.reshape(1, -1))

    @classmethod
    def zeros(cls, rows, cols):
        return cls._wrap(np.zeros((rows, cols)))

    @classmethod
    def ones(cls, rows, cols):
        return cls._wrap(np.ones((rows, cols)))

    @classmethod
    def random(cls, rows, cols, scale=1.0, rng=None):
        """
        Xavier/Glorot uniform initialization.

        Values are drawn from U(-limit, limit) with
        limit = scale * sqrt(6 / (rows + cols)).

        Args:
            rows, cols: Shape (fan_out x fan_in for a weight matrix)
            scale: Multiplier on the limit
            rng: Optional numpy Generator, for reproducible weights
        """
        rng = rng if rng is not None else np.random.default_rng()
        limit = scale * np.sqrt(6.0 / (rows + cols))
        return cls._wrap(rng.uniform(-limit, limit, size=(rows, cols)))

    @property
    def rows(self):
        return self._values.shape[0]

    @property
    def cols(self):
        return self._values.shape[1]

    @property
    def shape(self):
        return self._values.shape

    @property
    def data(self):
        """Nested lists, row by row."""
        return self._values.tolist()

    def to_array(self):
        """Flatten row by row."""
        return self._values.reshape(-1).tolist()

    def to_numpy(self):
        return self._values.copy()

    def _describe(self):
        return f"{self.rows}x{self.cols}"

    def _check_same_shape(self, other, verb):
        if self.shape != other.shape:
            raise DimensionError(f"Cannot {verb} {self._describe()} with {other._describe()}")

    def multiply(self, other):
        """Matrix product: (m x n) * (n x p) = (m x p)."""
        if self.cols != other.rows:
            raise DimensionError(f"Cannot multiply {self._describe()} with {other._describe()}")
        return Matrix._wrap(self._values @ other._values)

    def hadamard(self, other):
        """Element-wise product, e.g. error * activation derivative."""
        self._check_same_shape(other, "element-wise multiply")
        return Matrix._wrap(self._values * other._values)

    def add(self, other):
        if isinstance(other, Matrix):
            self._check_same_shape(other, "add")
            return Matrix._wrap(self._values + other._values)
        return Matrix._wrap(self._values + float(other))

    def subtract(self, other):
        if isinstance(other, Matrix):
            self._check_same_shape(other, "subtract")
            return Matrix._wrap(self._values - other._values)
        return Matrix._wrap(self._values - float(other))

    def add_column_vector(self, column):
        """Add a rows x 1 vector to every column (bias broadcast over a batch)."""
        if column.shape != (self.rows, 1):
            raise DimensionError(f"Cannot broadcast {column._describe()} over {self._describe()}")
        return Matrix._wrap(self._values + column._values)

    def scale(self, scalar):
        return Matrix._wrap(self._values * float(scalar))

    def transpose(self):
        return Matrix._wrap(self._values.T.copy())

    def map(self, fn):
        """Apply fn(value, row, col) to every element."""
        result = np.empty_like(self._values)
        for (row, col), value in np.ndenumerate(self._values):
            result[row, col] = fn(float(value), row, col)
        return Matrix._wrap(result)

    def apply(self, fn):
        """Apply a vectorized function (numpy array in, same-shape array out)."""
        result = np.asarray(fn(self._values.copy()), dtype=float)
        if result.shape != self.shape:
            raise DimensionError(f"Function changed shape {self._describe()} to {'x'.join(map(str, result.shape))}")
        return Matrix._wrap(result)

    def row_sums(self):
        """rows x 1 vector of the sum of each row."""
        return Matrix._wrap(self._values.sum(axis=1, keepdims=True))

    def argmax_rows(self):
        """Row index of the largest value in each column (first one on ties)."""
        return np.argmax(self._values, axis=0).tolist()

    def sum(self):
        return float(self._values.sum())

    def copy(self):
        return Matrix._wrap(self._values.copy())

    def get(self, row, col):
        return float(self._values[row, col])

    def set(self, row, col, value):
        self._values[row, col] = value

    def frobenius_norm(self):
        """sqrt of the sum of squares, handy to watch gradient magnitudes."""
        return float(np.sqrt(np.sum(self._values ** 2)))

    def __eq__(self, other):
        if not isinstance(other, Matrix):
            return NotImplemented
        return self.shape == other.shape and bool(np.array_equal(self._values, other._values))

    __hash__ = None

    def __repr__(self):
        return f"Matrix({self.rows}x{self.cols}, {self.data})"
