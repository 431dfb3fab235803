"""Simulation of the price effects of a merger."""

import copy
import time
from typing import Any, List, Optional, Sequence, Union

import numpy as np

from .. import exceptions, options
from ..configurations.iteration import Iteration
from ..configurations.optimization import Optimization
from ..construction import build_diversions, build_ownership
from ..demands import build_demand
from ..demands.demand import Demand
from ..markets.market import Market
from ..primitives import MarketObservation
from ..results.simulation_results import SimulationResults
from ..utilities.basics import (
    Array, Error, StringRepresentation, format_number, format_seconds, format_table, freeze, output
)


class Simulation(StringRepresentation):
    r"""Simulation of the unilateral price effects of a merger under differentiated Bertrand competition.

    All inputs are validated when the simulation is initialized. Solving the simulation with :meth:`Simulation.solve`
    calibrates the demand system to observed prices, quantities, margins, and diversion ratios under pre-merger
    ownership; recovers marginal costs from Bertrand first-order conditions; and computes pre- and post-merger
    equilibrium prices.

    Parameters
    ----------
    demand : `Demand or str`
        Demand system, which is either an uncalibrated :class:`Demand` such as :class:`Linear` or the name of one, which
        is passed to :func:`build_demand`.
    prices : `array-like`
        Observed pre-merger prices, which must be positive.
    quantities : `array-like`
        Observed pre-merger quantities, which must be non-negative and have a positive sum.
    margins : `array-like`
        Observed pre-merger margins, :math:`(p - c) / p`, which are either between zero and one or ``numpy.nan`` when
        they are not observed. Margins must be observed for every product of at least one pre-merger firm.
    owner_pre : `array-like`
        Pre-merger ownership: either a vector of firm IDs or a :math:`K \times K` ownership matrix. Refer to
        :func:`build_ownership` for more information.
    owner_post : `array-like`
        Post-merger ownership in the same format as ``owner_pre``.
    diversions : `array-like, optional`
        A :math:`K \times K` matrix of diversion ratios with diagonal elements equal to :math:`-1`. By default,
        diversion is proportional to quantity shares. Refer to :func:`build_diversions` for more information.
    mc_delta : `array-like, optional`
        Proportional changes in each product's marginal costs due to the merger. By default, the merger does not change
        marginal costs.
    subset : `array-like, optional`
        Flags for products that are included in the post-merger equilibrium. By default, all products are included.
        Pre-merger prices are always computed for all products.
    price_start : `array-like, optional`
        Starting prices for equilibrium computation, which must be positive. Prices of excluded products are held at
        these values when solving for post-merger linear demand prices. By default, observed prices are used.
    labels : `sequence of str, optional`
        Product labels. By default, products are labeled ``'Prod1'``, ``'Prod2'``, and so on.
    parameter_start : `array-like, optional`
        Starting values for demand systems that are calibrated with an optimization routine. By default, each demand
        system chooses its own starting values.

    Attributes
    ----------
    demand : `Demand`
        Demand system. Each call to :meth:`Simulation.solve` calibrates a copy of it, so it is never modified.
    observation : `MarketObservation`
        Validated pre-merger market data.
    owner_pre : `ndarray`
        Pre-merger ownership matrix.
    owner_post : `ndarray`
        Post-merger ownership matrix.
    diversions : `ndarray`
        Diversion ratios.
    mc_delta : `ndarray`
        Proportional changes in marginal costs.
    subset : `ndarray`
        Flags for products that are included in the post-merger equilibrium.
    price_start : `ndarray`
        Starting prices for equilibrium computation.
    parameter_start : `ndarray or None`
        Starting values for calibration.

    Examples
    --------
    A merger between the owners of the first two of three single-product firms::

        simulation = Simulation(
            'linear', prices=[2.9, 3.4, 2.2], quantities=[650, 998, 1801], margins=[0.435, 0.417, 0.370],
            owner_pre=['A', 'B', 'C'], owner_post=['A', 'A', 'C']
        )
        results = simulation.solve()

    """

    demand: Demand
    observation: MarketObservation
    owner_pre: Array
    owner_post: Array
    diversions: Array
    mc_delta: Array
    subset: Array
    price_start: Array
    parameter_start: Optional[Array]

    def __init__(
            self, demand: Union[Demand, str], prices: Any, quantities: Any, margins: Any, owner_pre: Any,
            owner_post: Any, diversions: Optional[Any] = None, mc_delta: Optional[Any] = None,
            subset: Optional[Any] = None, price_start: Optional[Any] = None, labels: Optional[Sequence[Any]] = None,
            parameter_start: Optional[Any] = None) -> None:
        """Validate and store the configuration."""
        if isinstance(demand, str):
            demand = build_demand(demand)
        if not isinstance(demand, Demand):
            raise TypeError("demand must be a Demand instance or the name of one.")
        self.demand = demand
        self.observation = MarketObservation(prices, quantities, margins, labels)
        products = self.observation.products

        # resolve ownership and diversion ratios
        self.owner_pre = build_ownership(owner_pre, products)
        self.owner_post = build_ownership(owner_post, products)
        self.diversions = build_diversions(self.observation.shares, diversions)
        if not Demand.compute_identified(self.observation, self.owner_pre).any():
            raise exceptions.InputValidationError(
                "Margins must be observed for all products of at least one pre-merger firm."
            )

        # validate product-level settings
        self.mc_delta = self._validate_vector(
            np.zeros(products) if mc_delta is None else mc_delta, 'mc_delta', products
        )
        self.price_start = self._validate_vector(
            self.observation.prices if price_start is None else price_start, 'price_start', products
        )
        if (self.price_start <= 0).any():
            raise exceptions.InputValidationError("Starting prices must be positive.")
        if subset is None:
            self.subset = np.ones(products, np.bool_)
        else:
            self.subset = np.asarray(subset).flatten()
            if self.subset.dtype != np.bool_ or self.subset.size != products:
                raise exceptions.InputValidationError(f"subset must be a vector of {products} booleans.")
            if not self.subset.any():
                raise exceptions.InputValidationError("subset must include at least one product.")
        self.parameter_start = None if parameter_start is None else np.asarray(parameter_start, options.dtype)
        freeze(self.owner_pre, self.owner_post, self.diversions, self.mc_delta, self.subset, self.price_start)

    @staticmethod
    def _validate_vector(values: Any, name: str, products: int) -> Array:
        """Validate a finite vector with one value for each product."""
        try:
            vector = np.array(values, options.dtype).flatten()
        except (TypeError, ValueError):
            raise exceptions.InputValidationError(f"{name} must be numeric.")
        if vector.size != products or not np.isfinite(vector).all():
            raise exceptions.InputValidationError(f"{name} must be a vector of {products} finite values.")
        return vector

    def __str__(self) -> str:
        """Format simulation information as a string."""
        header = ["Product", "Pre-Merger Owner", "Post-Merger Owner", "Cost Change", "In Subset"]
        data = []
        for index, label in enumerate(self.observation.labels):
            data.append([
                label,
                ", ".join(self.observation.labels[k] for k in np.flatnonzero(self.owner_pre[index])),
                ", ".join(self.observation.labels[k] for k in np.flatnonzero(self.owner_post[index])),
                format_number(self.mc_delta[index]),
                str(bool(self.subset[index]))
            ])
        return "\n\n".join([
            f"{self.demand.name} Demand Merger Simulation",
            str(self.observation),
            format_table(header, *data, title="Configuration")
        ])

    def solve(
            self, optimization: Optional[Optimization] = None, iteration: Optional[Iteration] = None,
            constrained_optimization: Optional[Optimization] = None, error_behavior: str = 'raise') -> (
            SimulationResults):
        r"""Calibrate demand, recover marginal costs, and compute pre- and post-merger equilibrium prices.

        Demand is calibrated so that Bertrand first-order conditions hold at observed data under pre-merger ownership.
        Marginal costs are recovered from the same conditions,

        .. math:: c = p - \eta(p),

        and post-merger marginal costs are scaled by :math:`1 + \Delta c`. Equilibrium prices of linear demand are
        computed in closed form, and other demand systems iterate over the markup equation in log prices,
        :math:`\log p \leftarrow \log[c + \eta(p)]`.

        Parameters
        ----------
        optimization : `Optimization, optional`
            :class:`Optimization` configuration for calibrating symmetric linear, logit, CES, and AIDS demand. By
            default, ``Optimization('l-bfgs-b', {'gtol': 1e-10, 'ftol': 1e-14})`` is used.
        iteration : `Iteration, optional`
            :class:`Iteration` configuration for computing equilibrium prices of demand systems without closed-form
            prices. By default, ``Iteration('df-sane', {'ftol': 1e-10, 'fatol': 1e-10, 'maxfev': 5000})`` is used.
        constrained_optimization : `Optimization, optional`
            :class:`Optimization` configuration that supports constraints, which is used when closed-form linear
            demand prices imply negative quantities. By default, ``Optimization('slsqp', {'ftol': 1e-12})`` is used.
        error_behavior : `str, optional`
            How to handle errors when computing equilibrium prices. Errors when calibrating demand or recovering
            marginal costs are always raised. The following behaviors are supported:

                - ``'raise'`` (default) - Raise an exception.

                - ``'warn'`` - Output the errors and use the last computed prices.

        Returns
        -------
        `SimulationResults`
            :class:`SimulationResults` of the solved simulation.

        """
        if optimization is None:
            optimization = Optimization('l-bfgs-b', {'gtol': 1e-10, 'ftol': 1e-14})
        if iteration is None:
            iteration = Iteration('df-sane', {'ftol': 1e-10, 'fatol': 1e-10, 'maxfev': 5000})
        if constrained_optimization is None:
            constrained_optimization = Optimization('slsqp', {'ftol': 1e-12})
        if not isinstance(optimization, Optimization) or not isinstance(constrained_optimization, Optimization):
            raise TypeError("optimization and constrained_optimization must be None or Optimization instances.")
        if not isinstance(iteration, Iteration):
            raise TypeError("iteration must be None or an Iteration instance.")
        if error_behavior not in {'raise', 'warn'}:
            raise ValueError("error_behavior must be 'raise' or 'warn'.")

        output(f"Solving the {self.demand.name} demand merger simulation ...")
        start_time = time.time()
        warnings: List[Error] = []

        # calibrate a copy of the demand system and recover marginal costs
        demand = copy.deepcopy(self.demand)
        calibration_stats, errors = demand.calibrate(
            self.observation, self.diversions, self.owner_pre, optimization, self.parameter_start
        )
        self._handle_errors(errors)
        market_pre = Market(demand, self.observation, self.owner_pre)
        costs_pre, errors = market_pre.safely_compute_costs()
        warnings.extend(self._handle_errors(errors))
        costs_post = costs_pre * (1 + self.mc_delta)

        # compute equilibrium prices
        market_post = Market(demand, self.observation, self.owner_post, self.subset)
        prices_pre, pre_stats, errors = market_pre.safely_compute_equilibrium_prices(
            costs_pre, self.price_start, iteration, constrained_optimization
        )
        warnings.extend(self._handle_errors(errors, error_behavior))
        prices_post, post_stats, errors = market_post.safely_compute_equilibrium_prices(
            costs_post, self.price_start, iteration, constrained_optimization
        )
        warnings.extend(self._handle_errors(errors, error_behavior))

        # structure the results
        results = SimulationResults(
            self, demand, costs_pre, costs_post, prices_pre, prices_post, calibration_stats, pre_stats, post_stats,
            warnings, start_time, time.time()
        )
        output(f"Solved the merger simulation after {format_seconds(results.computation_time)}.")
        output("")
        output(results)
        return results

    @staticmethod
    def _handle_errors(errors: List[Error], error_behavior: str = 'raise') -> List[Error]:
        """Output economic validity warnings and either raise or output any other errors. Errors that were not raised
        are returned.
        """
        fatal = [e for e in errors if not isinstance(e, exceptions.EconomicValidityWarning)]
        if fatal and error_behavior == 'raise':
            raise exceptions.MultipleErrors(fatal)
        if errors:
            output("")
            output(exceptions.MultipleErrors(errors))
            output("")
        return errors
