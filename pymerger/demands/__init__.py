"""Demand systems that can be calibrated to observed market data."""

from typing import Any, Dict, Type

from .demand import Demand
from .linear import Linear
from .loglinear import LogLinear
from .logit import Logit
from .ces import CES
from .aids import AIDS


DEMANDS: Dict[str, Type[Demand]] = {
    'linear': Linear,
    'loglinear': LogLinear,
    'logit': Logit,
    'ces': CES,
    'aids': AIDS,
}


def register_demand(name: str, demand_type: Type[Demand]) -> None:
    """Register a demand system so that it can be built by name."""
    if not isinstance(name, str):
        raise TypeError("name must be a str.")
    if not isinstance(demand_type, type) or not issubclass(demand_type, Demand):
        raise TypeError("demand_type must be a subclass of Demand.")
    DEMANDS[name.lower()] = demand_type


def build_demand(name: str, **demand_options: Any) -> Demand:
    """Build an uncalibrated demand system by name. Options are passed to the demand system's constructor.

    Parameters
    ----------
    name : `str`
        One of ``'linear'``, ``'loglinear'``, ``'logit'``, ``'ces'``, ``'aids'``, or a name that was added with
        :func:`register_demand`.
    demand_options : `dict`
        Options such as ``symmetry`` for linear demand, ``market_size`` and ``norm_index`` for logit demand, ``budget``
        for CES demand, and ``market_elasticity`` for AIDS demand.

    Returns
    -------
    `Demand`
        The uncalibrated demand system.

    """
    if not isinstance(name, str) or name.lower() not in DEMANDS:
        raise ValueError(f"name must be one of {list(DEMANDS)}.")
    return DEMANDS[name.lower()](**demand_options)
