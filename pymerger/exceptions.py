"""Merger simulation exceptions and warnings."""

import collections
from typing import Any, List, Sequence

import numpy as np

from .utilities.basics import Array, DetailedError, Error, InversionError, NumericalError, format_number


class MultipleErrors(Error):
    """Multiple errors that occurred around the same time."""

    _errors: List[Error]

    def __new__(cls, errors: Sequence[Error]) -> Any:
        """Defer to the class of a singular error."""
        if len(errors) == 1:
            return next(iter(errors))
        return super().__new__(cls)

    def __init__(self, errors: Sequence[Error]) -> None:
        """Store distinct errors."""
        super().__init__()
        self._errors = list(collections.OrderedDict.fromkeys(errors))

    def __str__(self) -> str:
        """Combine all the error messages."""
        return "\n".join(str(e) for e in self._errors)


class InputValidationError(DetailedError, ValueError):
    """Encountered invalid market data.

    Prices must be positive, quantities must be nonnegative, margins must be between zero and one or missing, and all
    product-level inputs must have one value for each product.

    """


class InvalidOwnershipError(InputValidationError):
    """Encountered an invalid ownership structure.

    Ownership must be either a vector of firm IDs with one ID for each product or a square matrix with one row and
    column for each product whose elements are between zero and one.

    """


class SingularSystemError(InversionError):
    """The system of first-order conditions used for calibration or pricing is singular.

    This problem is usually due to a degenerate combination of diversion ratios and ownership, or to diversion ratio
    rows that sum to exactly zero. Supplying diversion ratios that allow for an outside good or margins for more
    products can help.

    """


class CalibrationError(DetailedError):
    """Failed to calibrate demand parameters that are consistent with observed margins.

    This problem can sometimes be mitigated by choosing different starting values, configuring a different optimization
    routine, loosening its tolerances, or checking that margins and diversion ratios are mutually consistent.

    """


class PriceSolveError(Error):
    """The computation of equilibrium prices failed to converge.

    This problem can sometimes be mitigated by choosing different starting prices, increasing the maximum number of
    iterations, loosening the tolerance, or configuring a different iteration routine.

    """

    prices: Array
    residual_norm: float

    def __init__(self, prices: Array, residual_norm: float) -> None:
        """Store the last iterate and the norm of its first-order conditions."""
        super().__init__()
        self.prices = prices
        self.residual_norm = residual_norm

    def __str__(self) -> str:
        """Supplement the error with the residual norm."""
        return f"{super().__str__()} Max norm of the first-order conditions: {format_number(self.residual_norm)}."


class CalibrationNumericalError(NumericalError):
    """Encountered a numerical error when calibrating demand parameters.

    This problem is often due to overflow and can sometimes be mitigated by rescaling data or choosing different
    starting values.

    """


class CostsNumericalError(NumericalError):
    """Encountered a numerical error when computing marginal costs.

    This problem is often due to prior problems with calibrated parameters.

    """


class EquilibriumPricesNumericalError(NumericalError):
    """Encountered a numerical error when computing equilibrium prices.

    This problem is often due to the iteration routine trying out nonpositive prices or prices that create overflow, and
    can sometimes be mitigated by choosing different starting prices or configuring a different iteration routine.

    """


class EconomicValidityWarning(Error, UserWarning):
    """Encountered an economically implausible result."""


class NegativeCostsWarning(EconomicValidityWarning):
    """Recovered negative marginal costs.

    Observed margins, diversion ratios, and ownership are probably inconsistent with Bertrand pricing under the chosen
    demand system.

    """

    _labels: List[str]

    def __init__(self, costs: Array, labels: Sequence[str]) -> None:
        """Store the labels of products with negative costs."""
        super().__init__()
        self._labels = [str(l) for l, c in zip(labels, costs) if c < 0]

    def __str__(self) -> str:
        """Supplement the warning with the affected products."""
        return f"{super().__str__()} Products: {', '.join(self._labels)}."


class NegativeQuantitiesWarning(EconomicValidityWarning):
    """The closed-form equilibrium implied negative quantities.

    Prices were instead computed by constrained optimization that keeps quantities nonnegative.

    """

    _smallest: float

    def __init__(self, quantities: Array) -> None:
        """Store the most negative quantity."""
        super().__init__()
        self._smallest = float(np.min(quantities))

    def __str__(self) -> str:
        """Supplement the warning with the most negative quantity."""
        return f"{super().__str__()} Smallest quantity: {format_number(self._smallest)}."
