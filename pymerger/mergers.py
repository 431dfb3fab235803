"""Convenience functions that calibrate a demand system and simulate a merger in one call."""

from typing import Any, Optional

from .demands.aids import AIDS
from .demands.ces import CES
from .demands.demand import Demand
from .demands.linear import Linear
from .demands.logit import Logit
from .demands.loglinear import LogLinear
from .economies.simulation import Simulation
from .results.simulation_results import SimulationResults


def simulate(
        demand: Demand, prices: Any, quantities: Any, margins: Any, owner_pre: Any, owner_post: Any,
        solve_options: Optional[dict] = None, **simulation_options: Any) -> SimulationResults:
    """Configure a :class:`Simulation` with a demand system and solve it.

    Parameters
    ----------
    demand : `Demand`
        Uncalibrated demand system.
    prices : `array-like`
        Observed pre-merger prices.
    quantities : `array-like`
        Observed pre-merger quantities.
    margins : `array-like`
        Observed pre-merger margins, which can be ``numpy.nan`` for unobserved margins.
    owner_pre : `array-like`
        Pre-merger ownership vector or matrix.
    owner_post : `array-like`
        Post-merger ownership vector or matrix.
    solve_options : `dict, optional`
        Arguments passed to :meth:`Simulation.solve`, such as ``iteration`` or ``error_behavior``.
    simulation_options : `dict`
        Other arguments passed to :class:`Simulation`, such as ``diversions``, ``mc_delta``, ``subset``,
        ``price_start``, ``labels``, and ``parameter_start``.

    Returns
    -------
    `SimulationResults`
        :class:`SimulationResults` of the solved simulation.

    """
    simulation = Simulation(demand, prices, quantities, margins, owner_pre, owner_post, **simulation_options)
    return simulation.solve(**(solve_options or {}))


def linear(
        prices: Any, quantities: Any, margins: Any, owner_pre: Any, owner_post: Any, symmetry: bool = True,
        **options: Any) -> SimulationResults:
    """Simulate a merger with :class:`Linear` demand. Other arguments are passed to :func:`simulate`."""
    return simulate(Linear(symmetry), prices, quantities, margins, owner_pre, owner_post, **options)


def loglinear(prices: Any, quantities: Any, margins: Any, owner_pre: Any, owner_post: Any, **options: Any) -> (
        SimulationResults):
    """Simulate a merger with :class:`LogLinear` demand. Other arguments are passed to :func:`simulate`."""
    return simulate(LogLinear(), prices, quantities, margins, owner_pre, owner_post, **options)


def logit(
        prices: Any, quantities: Any, margins: Any, owner_pre: Any, owner_post: Any,
        market_size: Optional[float] = None, norm_index: int = 0, **options: Any) -> SimulationResults:
    """Simulate a merger with :class:`Logit` demand. Other arguments are passed to :func:`simulate`."""
    demand = Logit(market_size, norm_index)
    return simulate(demand, prices, quantities, margins, owner_pre, owner_post, **options)


def ces(
        prices: Any, quantities: Any, margins: Any, owner_pre: Any, owner_post: Any, budget: Optional[float] = None,
        **options: Any) -> SimulationResults:
    """Simulate a merger with :class:`CES` demand. Other arguments are passed to :func:`simulate`."""
    return simulate(CES(budget), prices, quantities, margins, owner_pre, owner_post, **options)


def aids(
        prices: Any, quantities: Any, margins: Any, owner_pre: Any, owner_post: Any, market_elasticity: float = -1.0,
        **options: Any) -> SimulationResults:
    """Simulate a merger with :class:`AIDS` demand. Other arguments are passed to :func:`simulate`."""
    return simulate(AIDS(market_elasticity), prices, quantities, margins, owner_pre, owner_post, **options)
