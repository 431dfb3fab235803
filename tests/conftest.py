"""Fixtures used by tests."""

import os
from typing import cast, Any, Dict, Iterator

import numpy as np
import pytest

from pymerger import Simulation, SimulationResults, build_demand, options


# define common types
MarketData = Dict[str, Any]


@pytest.fixture(scope='session', autouse=True)
def configure() -> Iterator[None]:
    """Configure NumPy so that it raises all warnings as exceptions. Next, if a DTYPE environment variable is set in
    this testing environment that is different from the default data type, use it for all numeric calculations.
    """

    # configure NumPy so that it raises all warnings as exceptions
    old_error = np.seterr(all='raise')

    # use any different data type for all numeric calculations
    old_dtype = options.dtype
    dtype_string = os.environ.get('DTYPE')
    if dtype_string:
        options.dtype = cast(Any, np.dtype(dtype_string))
        if np.finfo(options.dtype).dtype == old_dtype:
            pytest.skip(f"The {dtype_string} data type is the same as the default one in this environment.")

    # run tests before reverting all changes
    yield
    options.dtype = old_dtype
    np.seterr(**old_error)


@pytest.fixture
def three_firm_data() -> MarketData:
    """Market data for three single-product firms, the first two of which merge."""
    return {
        'prices': np.array([2.9, 3.4, 2.2]),
        'quantities': np.array([650, 998, 1801]),
        'margins': np.array([0.435, 0.417, 0.370]),
        'owner_pre': np.array([1, 2, 3]),
        'owner_post': np.array([1, 1, 3]),
        'labels': ['Prod1', 'Prod2', 'Prod3']
    }


@pytest.fixture(params=[
    pytest.param(('linear', {}), id="linear"),
    pytest.param(('linear', {'symmetry': False}), id="asymmetric linear"),
    pytest.param(('loglinear', {}), id="log-linear"),
    pytest.param(('logit', {}), id="logit"),
    pytest.param(('logit', {'market_size': 5000}), id="logit with an outside good"),
    pytest.param(('ces', {}), id="CES"),
    pytest.param(('ces', {'budget': 12000}), id="CES with an outside good"),
    pytest.param(('aids', {}), id="AIDS"),
    pytest.param(('aids', {'market_elasticity': -1.5}), id="AIDS with an elastic market")
])
def demand_configuration(request: Any) -> Any:
    """Name of a demand system and options for constructing it."""
    return request.param


@pytest.fixture
def simulation_results(three_firm_data: MarketData, demand_configuration: Any) -> SimulationResults:
    """Solve a merger simulation with each demand system."""
    name, demand_options = demand_configuration
    simulation = Simulation(build_demand(name, **demand_options), **three_firm_data)
    return simulation.solve()
