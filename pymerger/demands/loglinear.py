"""Log-linear demand."""

from typing import List, Optional, Tuple

import numpy as np

from .demand import Demand
from .. import exceptions, options
from ..configurations.optimization import Optimization
from ..primitives import MarketObservation
from ..utilities.basics import Array, Error, NumericalErrorHandler, SolverStats, freeze


class LogLinear(Demand):
    r"""Log-linear demand, :math:`\log q = a + E \log p`.

    Own-price elasticities, :math:`e = \text{diag}(E)`, are calibrated from Bertrand first-order conditions. Cross-price
    elasticities are implied by diversion ratios at observed prices and quantities:

    .. math:: E_{jk} = -D_{kj} e_k \frac{q_k}{q_j}.

    Intercepts are chosen so that demand passes through observed quantities. All observed quantities must be positive.

    The prices of excluded products are held fixed, and their quantities are zero.

    Attributes
    ----------
    intercepts : `ndarray`
        Intercepts, :math:`a`.
    elasticities : `ndarray`
        Constant elasticity matrix, :math:`E`.

    """

    name = "Log-Linear"
    intercepts: Array
    elasticities: Array

    def _format_matrix(self) -> Tuple[str, Array]:
        """Display elasticities."""
        return "Elasticities", self.elasticities

    @NumericalErrorHandler(exceptions.CalibrationNumericalError)
    def calibrate(
            self, observation: MarketObservation, diversions: Array, ownership: Array,
            optimization: Optional[Optimization] = None, parameter_start: Optional[Array] = None) -> (
            Tuple[SolverStats, List[Error]]):
        """Solve the linear system of first-order conditions for own-price elasticities. Starting values are not
        used.
        """
        self._validate_quantities(observation)
        self.products = observation.products
        quantities = observation.quantities
        prices = observation.prices

        def compute_unit_jacobian(i: int) -> Array:
            """Compute the Jacobian at observed data implied by a unit own-price elasticity for one product."""
            jacobian = np.zeros((self.products, self.products), options.dtype)
            jacobian[:, i] = -diversions[i] * quantities[i] / prices[i]
            jacobian[i, i] = quantities[i] / prices[i]
            return jacobian

        profile = np.ones(self.products, options.dtype)
        own, errors = self._solve_linear_calibration(
            observation, ownership, compute_unit_jacobian, profile, "own-price elasticities"
        )
        self.elasticities = -diversions.T * own[None] * quantities[None] / quantities[:, None]
        self.elasticities[np.diag_indices(self.products)] = own
        self.intercepts = np.log(quantities) - self.elasticities @ np.log(prices)
        freeze(self.elasticities, self.intercepts)
        self.calibrated = not errors
        return SolverStats(), errors

    def compute_shares(self, prices: Array, active: Optional[Array] = None) -> Array:
        """Compute quantity shares."""
        quantities = self.compute_quantities(prices, active)
        return quantities / quantities.sum()

    def compute_quantities(self, prices: Array, active: Optional[Array] = None) -> Array:
        """Compute quantities, which are zero for excluded products."""
        active = self._get_active(active)
        quantities = np.zeros(self.products, options.dtype)
        quantities[active] = np.exp(self.intercepts[active] + self.elasticities[active] @ np.log(prices))
        return quantities

    def compute_jacobian(self, prices: Array, active: Optional[Array] = None) -> Array:
        """Compute the Jacobian, :math:`J_{jk} = E_{jk} q_j / p_k`."""
        active = self._get_active(active)
        quantities = self.compute_quantities(prices, active)
        jacobian = self.elasticities * quantities[:, None] / prices[None]
        return jacobian * (active[:, None] & active[None])
