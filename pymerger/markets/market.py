"""Market-level marginal cost recovery and equilibrium pricing."""

from typing import List, Optional, Tuple

import numpy as np

from .. import exceptions, options
from ..configurations.iteration import ContractionResults, Iteration
from ..configurations.optimization import Optimization
from ..demands.demand import Demand
from ..primitives import MarketObservation
from ..utilities.basics import Array, Error, NumericalErrorHandler, SolverStats, compute_finite_differences


class Market(object):
    """A market with a calibrated demand system and a fixed ownership structure.

    Products that are not active are removed from first-order conditions. Their prices are ``numpy.nan`` in computed
    equilibria.
    """

    demand: Demand
    observation: MarketObservation
    ownership: Array
    active: Array

    def __init__(
            self, demand: Demand, observation: MarketObservation, ownership: Array,
            active: Optional[Array] = None) -> None:
        """Store the market's primitives."""
        self.demand = demand
        self.observation = observation
        self.ownership = ownership
        self.active = np.ones(observation.products, np.bool_) if active is None else active

    def compute_costs(self) -> Tuple[Array, List[Error]]:
        """Recover marginal costs from observed prices, :math:`c = p - \\eta(p)`."""
        errors: List[Error] = []
        prices = self.observation.prices
        markups = self.demand.compute_markups(prices, self.ownership, self.active)
        if not np.isfinite(markups[self.active]).all():
            matrix, _ = self.demand.compute_markup_system(prices, self.ownership, self.active)
            errors.append(exceptions.SingularSystemError(matrix))
        costs = prices - markups
        if (np.nan_to_num(costs) < 0).any():
            errors.append(exceptions.NegativeCostsWarning(np.nan_to_num(costs), self.observation.labels))
        return costs, errors

    def compute_foc_norm(self, prices: Array, costs: Array) -> float:
        """Compute the infinity norm of the first-order conditions of active products. It is undefined when any
        price is not positive.
        """
        if (prices[self.active] <= 0).any():
            return np.nan
        foc = self.demand.compute_foc(prices, costs, self.ownership, self.active)[self.active]
        return float(np.abs(foc).max()) if foc.size > 0 else 0.0

    def compute_equilibrium_prices(
            self, costs: Array, price_start: Array, iteration: Iteration, constrained_optimization: Optimization) -> (
            Tuple[Array, SolverStats, List[Error]]):
        """Compute equilibrium prices of active products, holding the prices of excluded products at their starting
        values while solving. Demand systems with linear first-order conditions are solved in closed form, and other
        demand systems iterate over the markup equation in log prices.
        """
        closed_form = self.demand.compute_closed_form_prices(costs, self.ownership, self.active, price_start)
        if closed_form is not None:
            prices, stats, errors = self.compute_linear_prices(
                costs, price_start, closed_form, constrained_optimization
            )
        else:
            prices, stats, errors = self.iterate_prices(costs, price_start, iteration)

        # report any failure along with first-order conditions at the last prices
        residual_norm = self.compute_foc_norm(prices, costs) if not stats.converged else 0.0
        prices = np.where(self.active, prices, np.nan)
        if not stats.converged:
            errors.append(exceptions.PriceSolveError(prices, residual_norm))
        return prices, stats, errors

    def compute_linear_prices(
            self, costs: Array, price_start: Array, closed_form: Tuple[Array, Array],
            constrained_optimization: Optimization) -> Tuple[Array, SolverStats, List[Error]]:
        """Use closed-form prices unless they imply negative quantities, in which case the sum of squared first-order
        conditions is minimized subject to non-negative quantities, starting from the closed-form prices.
        """
        errors: List[Error] = []
        active_prices, matrix = closed_form
        prices = price_start.copy()
        prices[self.active] = active_prices
        if not np.isfinite(active_prices).all():
            errors.append(exceptions.SingularSystemError(matrix))
            return prices, SolverStats(), errors

        quantities = self.demand.compute_quantities(prices, self.active)[self.active]
        if (quantities >= 0).all():
            return prices, SolverStats(), errors
        errors.append(exceptions.NegativeQuantitiesWarning(quantities))

        def expand(x: Array) -> Array:
            """Fill in the prices of excluded products."""
            expanded = price_start.copy()
            expanded[self.active] = x
            return expanded

        def objective_function(x: Array) -> Tuple[float, Optional[Array]]:
            """Compute the sum of squared first-order conditions and its gradient, :math:`2M'f`."""
            foc = self.demand.compute_foc(expand(x), costs, self.ownership, self.active)[self.active]
            gradient = 2 * matrix.T @ foc if constrained_optimization._compute_gradient else None
            return foc @ foc, gradient

        jacobian = self.demand.compute_jacobian(prices, self.active)[np.ix_(self.active, self.active)]
        constraints = [{
            'type': 'ineq',
            'fun': lambda x: self.demand.compute_quantities(expand(x), self.active)[self.active],
            'jac': lambda _: jacobian
        }]
        active_prices, stats = constrained_optimization._optimize(
            active_prices, None, objective_function, constraints
        )
        return expand(active_prices), stats, errors

    def iterate_prices(
            self, costs: Array, price_start: Array, iteration: Iteration) -> Tuple[Array, SolverStats, List[Error]]:
        r"""Iterate over the markup equation in log prices, :math:`\log p \leftarrow \log[c + \eta(p)]`, to compute
        prices of active products.
        """
        errors: List[Error] = []

        def expand(x: Array) -> Array:
            """Fill in the prices of excluded products."""
            expanded = price_start.copy()
            expanded[self.active] = x
            return expanded

        def compute_next(x: Array) -> Array:
            """Compute the next log prices, which are undefined when costs plus markups are not positive."""
            markups = self.demand.compute_markups(expand(np.exp(x)), self.ownership, self.active)[self.active]
            prices = costs[self.active] + markups
            if not np.isfinite(prices).all() or (prices <= 0).any():
                return np.full_like(x, np.nan)
            return np.log(prices)

        def contraction(x: Array) -> ContractionResults:
            """Compute the next log prices and optionally the Jacobian of the contraction."""
            jacobian = None
            if iteration._compute_jacobian:
                jacobian = compute_finite_differences(compute_next, x)
            return compute_next(x), jacobian

        initial = np.log(price_start[self.active].astype(options.dtype))
        log_prices, stats = iteration._iterate(initial, contraction)
        return expand(np.exp(log_prices)), stats, errors

    @NumericalErrorHandler(exceptions.CostsNumericalError)
    def safely_compute_costs(self) -> Tuple[Array, List[Error]]:
        """Recover marginal costs, handling any numerical errors."""
        return self.compute_costs()

    @NumericalErrorHandler(exceptions.EquilibriumPricesNumericalError)
    def safely_compute_equilibrium_prices(
            self, costs: Array, price_start: Array, iteration: Iteration, constrained_optimization: Optimization) -> (
            Tuple[Array, SolverStats, List[Error]]):
        """Compute equilibrium prices, handling any numerical errors."""
        return self.compute_equilibrium_prices(costs, price_start, iteration, constrained_optimization)
