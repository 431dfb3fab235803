"""Logit demand."""

from typing import List, Optional, Sequence, Tuple

import numpy as np

from .demand import Demand
from .. import exceptions, options
from ..configurations.optimization import Optimization
from ..primitives import MarketObservation
from ..utilities.basics import Array, Error, NumericalErrorHandler, SolverStats, freeze


class Logit(Demand):
    r"""Logit demand.

    Consumers choose the product with the highest utility, :math:`u_j = \delta_j + \alpha p_j + \epsilon_j`, where
    :math:`\epsilon_j` is a type I extreme value error. Shares are

    .. math:: s_j = \frac{\exp(\delta_j + \alpha p_j)}{o + \sum_{k \in A} \exp(\delta_k + \alpha p_k)}

    where :math:`A` is the set of products in the choice set, and :math:`o` is one if there is an outside good and zero
    otherwise. Quantities are :math:`q = Ms` where :math:`M` is the market size. Without an outside good, the market
    size is the total observed quantity and mean utilities are normalized so that :math:`\delta_n = 0` for one product.

    The price coefficient, :math:`\alpha < 0`, is calibrated by minimizing squared differences between implied and
    observed margins, and mean utilities reproduce observed shares. Excluded products are removed from the choice set.

    Parameters
    ----------
    market_size : `float, optional`
        Potential market size, :math:`M`, which must exceed the total observed quantity. By default, there is no
        outside good.
    norm_index : `int, optional`
        Index of the product whose mean utility is normalized to zero when there is no outside good. By default, the
        first product is used.

    Attributes
    ----------
    price_coefficient : `float`
        Price coefficient, :math:`\alpha`.
    mean_utilities : `ndarray`
        Mean utilities, :math:`\delta`.
    size : `float`
        Market size, :math:`M`.
    outside : `bool`
        Whether there is an outside good.

    """

    name = "Logit"
    market_size: Optional[float]
    norm_index: int
    price_coefficient: float
    mean_utilities: Array
    size: float
    outside: bool

    def __init__(self, market_size: Optional[float] = None, norm_index: int = 0) -> None:
        """Validate the configuration."""
        super().__init__()
        if market_size is not None and not (np.isfinite(market_size) and market_size > 0):
            raise ValueError("market_size must be None or a positive float.")
        if not isinstance(norm_index, int) or norm_index < 0:
            raise ValueError("norm_index must be a non-negative int.")
        self.market_size = market_size
        self.norm_index = norm_index
        self.outside = market_size is not None

    def _format_scalars(self) -> Sequence[Tuple[str, float]]:
        """Display the price coefficient and market size."""
        return [("Price Coefficient", self.price_coefficient), ("Market Size", self.size)]

    def _format_matrix(self) -> Tuple[str, Array]:
        """Display mean utilities as a column."""
        return "Mean Utility", self.mean_utilities[:, None]

    @NumericalErrorHandler(exceptions.CalibrationNumericalError)
    def calibrate(
            self, observation: MarketObservation, diversions: Array, ownership: Array,
            optimization: Optional[Optimization] = None, parameter_start: Optional[Array] = None) -> (
            Tuple[SolverStats, List[Error]]):
        """Optimize over the price coefficient. By default, the starting value is the coefficient that rationalizes
        the first observed margin for a single-product firm.
        """
        self._validate_quantities(observation)
        self.products = observation.products
        if self.norm_index >= self.products:
            raise exceptions.InputValidationError(f"norm_index must be less than the {self.products} products.")
        total = observation.quantities.sum()
        if self.market_size is None:
            self.size = total
        elif self.market_size <= total:
            raise exceptions.InputValidationError(
                f"The market size {self.market_size} must exceed the total quantity {total}."
            )
        else:
            self.size = self.market_size

        # mean utilities are identified relative to the outside good or to the normalized product
        shares = observation.quantities / self.size
        prices = observation.prices
        if self.outside:
            log_relative_shares = np.log(shares) - np.log(1 - shares.sum())
            relative_prices = prices
        else:
            log_relative_shares = np.log(shares) - np.log(shares[self.norm_index])
            relative_prices = prices - prices[self.norm_index]

        def update(theta: Array) -> None:
            """Update the price coefficient and the mean utilities that reproduce observed shares."""
            self.price_coefficient = float(theta[0])
            self.mean_utilities = log_relative_shares - self.price_coefficient * relative_prices

        if parameter_start is None:
            first = np.flatnonzero(observation.margins_observed)[0]
            denominator = observation.margins[first] * prices[first] * (1 - shares[first])
            start = -1 / denominator if denominator > 0 else -1 / prices[first]
            parameter_start = np.array([start], options.dtype)
        initial = np.asarray(parameter_start, options.dtype).flatten()
        if initial.size != 1 or not initial[0] < 0:
            raise ValueError("parameter_start for logit demand must be a single negative price coefficient.")

        bounds = (np.array([-np.inf]), np.array([-options.finite_differences_epsilon]))
        self.calibrated = True
        _, stats, errors = self._optimize_margins(observation, ownership, optimization, initial, bounds, update)
        freeze(self.mean_utilities)
        self.calibrated = not errors
        return stats, errors

    def compute_shares(self, prices: Array, active: Optional[Array] = None) -> Array:
        """Compute shares of the market size."""
        active = self._get_active(active)
        return compute_logit_probabilities(
            self.mean_utilities + self.price_coefficient * prices, active, self.outside
        )

    def compute_quantities(self, prices: Array, active: Optional[Array] = None) -> Array:
        """Compute quantities, :math:`q = Ms`."""
        shares = self.compute_shares(prices, active)
        return self.size * shares

    def compute_jacobian(self, prices: Array, active: Optional[Array] = None) -> Array:
        r"""Compute the Jacobian, :math:`J_{jk} = M\alpha s_j(1\{j = k\} - s_k)`."""
        shares = self.compute_shares(prices, active)
        return self.size * self.price_coefficient * (np.diag(shares) - np.outer(shares, shares))


def compute_logit_probabilities(utilities: Array, active: Array, outside: bool) -> Array:
    """Compute logit choice probabilities among active alternatives, optionally with an outside alternative that has
    zero utility. Utilities are shifted by their maximum before being exponentiated.
    """
    probabilities = np.zeros(utilities.size, options.dtype)
    if not active.any():
        return probabilities
    active_utilities = utilities[active]
    shift = max(active_utilities.max(), 0) if outside else active_utilities.max()
    exponentiated = np.exp(active_utilities - shift)
    denominator = exponentiated.sum()
    if outside:
        denominator += np.exp(-shift)
    probabilities[active] = exponentiated / denominator
    return probabilities
