"""
Exception hierarchy for pygreml.

All exceptions inherit from PyGREMLError so callers can catch any
library-specific error with a single clause.

Two families matter for model fitting:
    - ValidationError (and DimensionError, SingularMatrixError) are raised
      while a design is being built. They are fatal: nothing downstream
      attempts to repair an invalid dataset.
    - NotPositiveDefiniteError is raised by the likelihood evaluator when
      the assembled covariance cannot be factorized. The fitting loop
      catches it and scores the point as inadmissible; it never escapes
      an optimizer run.
"""


class PyGREMLError(Exception):
    """Base exception for all pygreml errors."""
    pass


class ValidationError(PyGREMLError):
    """A response, design matrix or relationship matrix was rejected."""
    pass


class DimensionError(ValidationError):
    """
    Array dimensions are incorrect or inconsistent.

    Raised when y, X and the relationship matrices disagree on the number
    of observations, when a relationship matrix is not square, or when
    there are more fixed effects than observations.
    """
    pass


class NumericalError(PyGREMLError):
    """A factorization or likelihood evaluation broke down."""
    pass


class SingularMatrixError(NumericalError):
    """
    Matrix is rank-deficient, so X'V^-1 X cannot be inverted.

    Attributes:
        matrix_name: Name/description of the problematic matrix
        condition_number: Estimated condition number, if available
        rank: Numerical rank, if computed
        expected_rank: Expected rank (typically the number of columns)
    """

    def __init__(
        self,
        message: str,
        matrix_name: str | None = None,
        condition_number: float | None = None,
        rank: int | None = None,
        expected_rank: int | None = None
    ):
        super().__init__(message)
        self.matrix_name = matrix_name
        self.condition_number = condition_number
        self.rank = rank
        self.expected_rank = expected_rank


class NotPositiveDefiniteError(NumericalError):
    """
    Matrix is not positive definite.

    Raised when the Cholesky factorization of an assembled covariance
    matrix V = sum(delta_i * R_i) fails.

    Attributes:
        matrix_name: Name/description of the problematic matrix
        min_eigenvalue: Minimum eigenvalue, if computed
        delta: Covariance weights at which the failure happened, if known
    """

    def __init__(
        self,
        message: str,
        matrix_name: str | None = None,
        min_eigenvalue: float | None = None,
        delta: tuple[float, ...] | None = None,
    ):
        super().__init__(message)
        self.matrix_name = matrix_name
        self.min_eigenvalue = min_eigenvalue
        self.delta = delta


class ConvergenceError(PyGREMLError):
    """
    Iterative algorithm failed to converge.

    Only raised when the caller asks for strict convergence; by default
    non-convergence is reported as a status flag on the fitted result.

    Attributes:
        iterations: Number of iterations completed
        final_change: Final parameter or objective change
        reason: Why convergence failed (e.g., 'max_iterations', 'line_search')
        threshold: The convergence threshold that was not met
    """

    def __init__(
        self,
        message: str,
        iterations: int,
        final_change: float | None = None,
        reason: str | None = None,
        threshold: float | None = None
    ):
        super().__init__(message)
        self.iterations = iterations
        self.final_change = final_change
        self.reason = reason
        self.threshold = threshold
