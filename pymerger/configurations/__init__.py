"""Configuration classes."""

from .iteration import Iteration
from .optimization import Optimization
