"""Constant elasticity of substitution (CES) demand."""

from typing import List, Optional, Sequence, Tuple

import numpy as np

from .demand import Demand
from .logit import compute_logit_probabilities
from .. import exceptions, options
from ..configurations.optimization import Optimization
from ..primitives import MarketObservation
from ..utilities.basics import Array, Error, NumericalErrorHandler, SolverStats, freeze


class CES(Demand):
    r"""Constant elasticity of substitution (CES) demand.

    Revenue shares are

    .. math:: r_j = \frac{w_j p_j^{1 - \gamma}}{w_0 + \sum_{k \in A} w_k p_k^{1 - \gamma}}

    where :math:`A` is the set of products in the choice set, :math:`\gamma > 1` is the elasticity of substitution, and
    :math:`w_0` is the weight of the outside good, which is one if there is an outside good and zero otherwise.
    Quantities are :math:`q_j = r_j Y / p_j` where :math:`Y` is the budget. Price elasticities are

    .. math:: \varepsilon_{jj} = -\gamma + (\gamma - 1)r_j, \quad \varepsilon_{jk} = (\gamma - 1)r_k.

    The elasticity of substitution is calibrated by minimizing squared differences between implied and observed
    margins, and weights reproduce observed revenue shares. Excluded products are removed from the choice set.

    Parameters
    ----------
    budget : `float, optional`
        Total budget, :math:`Y`, which must exceed total observed revenues. By default, the budget equals total observed
        revenues and there is no outside good.

    Attributes
    ----------
    substitution : `float`
        Elasticity of substitution, :math:`\gamma`.
    log_weights : `ndarray`
        Logarithms of the weights, :math:`\log w`, normalized relative to the outside good or, without one, relative to
        the first product.
    size : `float`
        Budget, :math:`Y`.
    outside : `bool`
        Whether there is an outside good.

    """

    name = "CES"
    budget: Optional[float]
    substitution: float
    log_weights: Array
    size: float
    outside: bool

    def __init__(self, budget: Optional[float] = None) -> None:
        """Validate the configuration."""
        super().__init__()
        if budget is not None and not (np.isfinite(budget) and budget > 0):
            raise ValueError("budget must be None or a positive float.")
        self.budget = budget
        self.outside = budget is not None

    def _format_scalars(self) -> Sequence[Tuple[str, float]]:
        """Display the elasticity of substitution and the budget."""
        return [("Substitution", self.substitution), ("Budget", self.size)]

    def _format_matrix(self) -> Tuple[str, Array]:
        """Display log weights as a column."""
        return "Log Weight", self.log_weights[:, None]

    @NumericalErrorHandler(exceptions.CalibrationNumericalError)
    def calibrate(
            self, observation: MarketObservation, diversions: Array, ownership: Array,
            optimization: Optional[Optimization] = None, parameter_start: Optional[Array] = None) -> (
            Tuple[SolverStats, List[Error]]):
        """Optimize over the elasticity of substitution. By default, the starting value is the elasticity that
        rationalizes the first observed margin for a single-product firm.
        """
        self._validate_quantities(observation)
        self.products = observation.products
        total = observation.revenues.sum()
        if self.budget is None:
            self.size = total
        elif self.budget <= total:
            raise exceptions.InputValidationError(f"The budget {self.budget} must exceed total revenues {total}.")
        else:
            self.size = self.budget

        # weights are identified relative to the outside good or to the first product
        revenue_shares = observation.revenues / self.size
        log_prices = np.log(observation.prices)
        if self.outside:
            log_relative_shares = np.log(revenue_shares) - np.log(1 - revenue_shares.sum())
            relative_log_prices = log_prices
        else:
            log_relative_shares = np.log(revenue_shares) - np.log(revenue_shares[0])
            relative_log_prices = log_prices - log_prices[0]

        def update(theta: Array) -> None:
            """Update the elasticity of substitution and the weights that reproduce observed revenue shares."""
            self.substitution = float(theta[0])
            self.log_weights = log_relative_shares + (self.substitution - 1) * relative_log_prices

        if parameter_start is None:
            first = np.flatnonzero(observation.margins_observed)[0]
            margin = observation.margins[first]
            share = revenue_shares[first]
            start = (1 / margin - share) / (1 - share) if margin > 0 and share < 1 else 2.0
            parameter_start = np.array([max(start, 1.1)], options.dtype)
        initial = np.asarray(parameter_start, options.dtype).flatten()
        if initial.size != 1 or not initial[0] > 1:
            raise ValueError("parameter_start for CES demand must be a single elasticity of substitution above one.")

        bounds = (np.array([1 + options.finite_differences_epsilon]), np.array([np.inf]))
        self.calibrated = True
        _, stats, errors = self._optimize_margins(observation, ownership, optimization, initial, bounds, update)
        freeze(self.log_weights)
        self.calibrated = not errors
        return stats, errors

    def compute_shares(self, prices: Array, active: Optional[Array] = None) -> Array:
        """Compute revenue shares."""
        active = self._get_active(active)
        utilities = self.log_weights + (1 - self.substitution) * np.log(prices)
        return compute_logit_probabilities(utilities, active, self.outside)

    def compute_quantities(self, prices: Array, active: Optional[Array] = None) -> Array:
        """Compute quantities, :math:`q = rY / p`."""
        return self.compute_shares(prices, active) * self.size / prices

    def compute_jacobian(self, prices: Array, active: Optional[Array] = None) -> Array:
        r"""Compute the Jacobian, :math:`J_{jk} = \varepsilon_{jk} q_j / p_k`."""
        shares = self.compute_shares(prices, active)
        quantities = shares * self.size / prices
        identity = np.eye(self.products, dtype=options.dtype)
        elasticities = (1 - self.substitution) * (identity - shares[None]) - identity
        return elasticities * quantities[:, None] / prices[None]
