"""Structuring of merger simulation results."""

from pathlib import Path
import pickle
from typing import List, Sequence, TYPE_CHECKING, Union

import numpy as np

from ..demands.demand import Demand
from ..primitives import MarketObservation
from ..utilities.basics import (
    Array, Error, SolverStats, StringRepresentation, format_number, format_seconds, format_table, freeze
)


# only import objects that create import cycles when checking types
if TYPE_CHECKING:
    from ..economies.simulation import Simulation  # noqa


class SimulationResults(StringRepresentation):
    r"""Results of a solved merger simulation.

    All arrays are read-only.

    Attributes
    ----------
    simulation : `Simulation`
        :class:`Simulation` that created these results.
    observation : `MarketObservation`
        Validated pre-merger market data.
    labels : `list of str`
        Product labels.
    diversions : `ndarray`
        Diversion ratios, :math:`D`, that were used to calibrate demand.
    owner_pre : `ndarray`
        Pre-merger ownership matrix.
    owner_post : `ndarray`
        Post-merger ownership matrix.
    demand : `Demand`
        Calibrated demand system.
    costs_pre : `ndarray`
        Pre-merger marginal costs recovered from observed prices.
    costs_post : `ndarray`
        Post-merger marginal costs, :math:`c_\text{post} = c_\text{pre}(1 + \Delta c)`.
    prices_pre : `ndarray`
        Simulated pre-merger equilibrium prices.
    prices_post : `ndarray`
        Simulated post-merger equilibrium prices, which are ``numpy.nan`` for products excluded from ``subset``.
    quantities_pre : `ndarray`
        Quantities at pre-merger equilibrium prices.
    quantities_post : `ndarray`
        Quantities at post-merger equilibrium prices, which are zero for excluded products.
    subset : `ndarray`
        Flags for products that are included in the post-merger equilibrium.
    mc_delta : `ndarray`
        Proportional changes in marginal costs due to the merger, :math:`\Delta c`.
    price_start : `ndarray`
        Starting prices for equilibrium computation.
    calibration_stats : `SolverStats`
        Statistics of the routine used to calibrate demand.
    pre_stats : `SolverStats`
        Statistics of the routine used to compute pre-merger prices.
    post_stats : `SolverStats`
        Statistics of the routine used to compute post-merger prices.
    warnings : `list of Error`
        Non-fatal problems, such as negative marginal costs, that were encountered when solving the simulation.
    computation_time : `float`
        Number of seconds it took to solve the simulation.

    """

    simulation: 'Simulation'
    observation: MarketObservation
    labels: List[str]
    diversions: Array
    owner_pre: Array
    owner_post: Array
    demand: Demand
    costs_pre: Array
    costs_post: Array
    prices_pre: Array
    prices_post: Array
    quantities_pre: Array
    quantities_post: Array
    subset: Array
    mc_delta: Array
    price_start: Array
    calibration_stats: SolverStats
    pre_stats: SolverStats
    post_stats: SolverStats
    warnings: List[Error]
    computation_time: float

    def __init__(
            self, simulation: 'Simulation', demand: Demand, costs_pre: Array, costs_post: Array, prices_pre: Array,
            prices_post: Array, calibration_stats: SolverStats, pre_stats: SolverStats, post_stats: SolverStats,
            warnings: List[Error], start_time: float, end_time: float) -> None:
        """Structure simulation results."""
        self.simulation = simulation
        self.observation = simulation.observation
        self.labels = simulation.observation.labels
        self.diversions = simulation.diversions
        self.owner_pre = simulation.owner_pre
        self.owner_post = simulation.owner_post
        self.demand = demand
        self.subset = simulation.subset
        self.mc_delta = simulation.mc_delta
        self.price_start = simulation.price_start
        self.costs_pre = costs_pre
        self.costs_post = costs_post
        self.prices_pre = prices_pre
        self.prices_post = prices_post
        self.quantities_pre = self.demand.compute_quantities(prices_pre)
        self.quantities_post = self.demand.compute_quantities(self._fill_excluded(prices_post), self.subset)
        self.calibration_stats = calibration_stats
        self.pre_stats = pre_stats
        self.post_stats = post_stats
        self.warnings = warnings
        self.computation_time = end_time - start_time
        freeze(
            self.costs_pre, self.costs_post, self.prices_pre, self.prices_post, self.quantities_pre,
            self.quantities_post
        )

    def __str__(self) -> str:
        """Format simulation results as a string."""
        summary_header = [
            ("Computation", "Time"),
            ("Calibration", "Iterations"),
            ("Pre-Merger", "Evaluations"),
            ("Post-Merger", "Evaluations"),
            ("", "Warnings"),
        ]
        summary_values = [
            format_seconds(self.computation_time),
            self.calibration_stats.iterations,
            self.pre_stats.evaluations,
            self.post_stats.evaluations,
            len(self.warnings),
        ]
        product_header = [
            ("", "Product"),
            ("Pre-Merger", "Price"),
            ("Post-Merger", "Price"),
            ("Price", "Change (%)"),
            ("Pre-Merger", "Cost"),
            ("Post-Merger", "Cost"),
            ("Pre-Merger", "Quantity"),
            ("Post-Merger", "Quantity"),
        ]
        product_values = []
        for values in zip(
                self.labels, self.prices_pre, self.prices_post, self.compute_price_changes(), self.costs_pre,
                self.costs_post, self.quantities_pre, self.quantities_post):
            product_values.append([values[0]] + [format_number(v) for v in values[1:]])
        return "\n\n".join([
            format_table(summary_header, summary_values, title="Simulation Results Summary"),
            format_table(product_header, *product_values, title="Product Results", line_indices={0})
        ])

    def _fill_excluded(self, prices: Array) -> Array:
        """Replace the missing prices of excluded products with their starting values."""
        return np.where(self.subset, prices, self.price_start)

    def compute_price_changes(self) -> Array:
        r"""Compute percentage price changes, :math:`100(p_\text{post} / p_\text{pre} - 1)`, which are ``numpy.nan``
        for excluded products.

        Returns
        -------
        `ndarray`
            Percentage price changes.

        """
        return 100 * (self.prices_post / self.prices_pre - 1)

    def compute_elasticities(self, premerger: bool = True) -> Array:
        r"""Compute the matrix of price elasticities, :math:`E_{jk} = \partial\log q_j / \partial\log p_k`.

        Parameters
        ----------
        premerger : `bool, optional`
            Whether to evaluate elasticities at pre-merger prices, which is the default. Otherwise, they are evaluated
            at post-merger prices, and rows of excluded products are ``numpy.nan``.

        Returns
        -------
        `ndarray`
            Price elasticities.

        """
        if premerger:
            return self.demand.compute_elasticities(self.prices_pre)
        return self.demand.compute_elasticities(self._fill_excluded(self.prices_post), self.subset)

    def to_pickle(self, path: Union[str, Path]) -> None:
        """Save these results as a pickle file.

        Parameters
        ----------
        path: `str or Path`
            File path to which these results will be saved.

        """
        with open(path, 'wb') as handle:
            pickle.dump(self, handle)

    def to_dict(
            self, attributes: Sequence[str] = (
                'labels', 'diversions', 'owner_pre', 'owner_post', 'costs_pre', 'costs_post', 'prices_pre',
                'prices_post', 'quantities_pre', 'quantities_post', 'subset', 'mc_delta', 'price_start',
                'computation_time'
            )) -> dict:
        """Convert these results into a dictionary that maps attribute names to values.

        Parameters
        ----------
        attributes : `sequence of str, optional`
            Name of attributes that will be added to the dictionary. By default, all array-valued attributes and the
            computation time are added.

        Returns
        -------
        `dict`
            Mapping from attribute names to values.

        """
        return {k: getattr(self, k) for k in attributes}
