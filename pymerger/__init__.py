"""Public-facing objects."""

from . import exceptions, options
from .configurations.iteration import Iteration
from .configurations.optimization import Optimization
from .construction import build_diversions, build_ownership
from .demands import DEMANDS, build_demand, register_demand
from .demands.aids import AIDS
from .demands.ces import CES
from .demands.demand import Demand
from .demands.linear import Linear
from .demands.logit import Logit
from .demands.loglinear import LogLinear
from .economies.simulation import Simulation
from .markets.market import Market
from .mergers import aids, ces, linear, logit, loglinear, simulate
from .primitives import MarketObservation
from .results.simulation_results import SimulationResults
from .version import __version__

__all__ = [
    'exceptions', 'options', 'Iteration', 'Optimization', 'build_diversions', 'build_ownership', 'DEMANDS',
    'build_demand', 'register_demand', 'AIDS', 'CES', 'Demand', 'Linear', 'Logit', 'LogLinear', 'Simulation', 'Market',
    'aids', 'ces', 'linear', 'logit', 'loglinear', 'simulate', 'MarketObservation', 'SimulationResults', '__version__'
]
