"""Almost Ideal Demand System (AIDS)."""

from typing import List, Optional, Sequence, Tuple

import numpy as np

from .demand import Demand
from .. import exceptions, options
from ..configurations.optimization import Optimization
from ..primitives import MarketObservation
from ..utilities.basics import Array, Error, NumericalErrorHandler, SolverStats, freeze


class AIDS(Demand):
    r"""Almost Ideal Demand System (AIDS).

    Revenue shares of inside products are linear in log prices, :math:`w = \alpha + \beta \log p`, and total
    expenditure on inside products responds to a share-weighted price index:

    .. math:: X = X_0 \exp\left[(1 + \varepsilon_M) \sum_{k \in A} w^0_k \log(p_k / p^0_k)\right]

    where :math:`\varepsilon_M` is the market elasticity, :math:`w^0` and :math:`p^0` are observed revenue shares and
    prices, and :math:`X_0` is observed total revenue. Quantities are :math:`q_j = w_j X / p_j` and price elasticities
    are

    .. math:: \varepsilon_{jk} = -1\{j = k\} + \frac{\beta_{jk}}{w_j} + (1 + \varepsilon_M)w^0_k.

    Own-price coefficients, :math:`\beta_{jj}`, are calibrated by minimizing squared differences between implied and
    observed margins. Only the coefficients of products whose first-order conditions involve only observed margins are
    optimized. Those of other products are :math:`\beta_{jj} = \sigma w^0_j(1 - w^0_j)` for the scale
    :math:`\sigma` that best fits optimized coefficients. Cross-price coefficients are implied by diversion ratios:

    .. math:: \beta_{kj} = w^0_k\left[-D_{jk}\frac{q_j}{q_k}\varepsilon_{jj} - (1 + \varepsilon_M)w^0_j\right].

    Excluded products are removed from the choice set and the shares of remaining products are not renormalized.

    Parameters
    ----------
    market_elasticity : `float, optional`
        Market elasticity, :math:`\varepsilon_M`. By default, it is :math:`-1`, which holds total expenditure fixed.

    Attributes
    ----------
    betas : `ndarray`
        Price coefficients, :math:`\beta`.
    intercepts : `ndarray`
        Intercepts, :math:`\alpha`.
    expenditure : `float`
        Observed total revenue, :math:`X_0`.
    base_prices : `ndarray`
        Observed prices, :math:`p^0`.
    base_shares : `ndarray`
        Observed revenue shares, :math:`w^0`.

    """

    name = "AIDS"
    market_elasticity: float
    betas: Array
    intercepts: Array
    expenditure: float
    base_prices: Array
    base_shares: Array

    def __init__(self, market_elasticity: float = -1.0) -> None:
        """Validate the configuration."""
        super().__init__()
        if not np.isfinite(market_elasticity):
            raise ValueError("market_elasticity must be a finite float.")
        self.market_elasticity = float(market_elasticity)

    def _format_scalars(self) -> Sequence[Tuple[str, float]]:
        """Display the market elasticity."""
        return [("Market Elasticity", self.market_elasticity)]

    def _format_matrix(self) -> Tuple[str, Array]:
        """Display price coefficients."""
        return "Betas", self.betas

    @NumericalErrorHandler(exceptions.CalibrationNumericalError)
    def calibrate(
            self, observation: MarketObservation, diversions: Array, ownership: Array,
            optimization: Optional[Optimization] = None, parameter_start: Optional[Array] = None) -> (
            Tuple[SolverStats, List[Error]]):
        """Optimize over own-price coefficients of identified products. By default, the starting values are the negative
        of their observed revenue shares.
        """
        self._validate_quantities(observation)
        self.products = observation.products
        self.expenditure = observation.revenues.sum()
        self.base_prices = observation.prices
        self.base_shares = shares = observation.revenues / self.expenditure
        quantities = observation.quantities
        scale = 1 + self.market_elasticity

        # cross-price coefficients are implied by own-price elasticities at observed data
        ratios = -diversions.T * quantities[None] / quantities[:, None]
        identified = self.compute_identified(observation, ownership)
        profile = shares * (1 - shares)

        def update(theta: Array) -> None:
            """Update all price coefficients and the intercepts that reproduce observed revenue shares."""
            own = np.zeros(self.products, options.dtype)
            own[identified] = theta
            own = self._extrapolate(own, identified, profile)
            own_elasticities = -1 + own / shares + scale * shares
            self.betas = shares[:, None] * (ratios * own_elasticities[None] - scale * shares[None])
            self.betas[np.diag_indices(self.products)] = own
            self.intercepts = shares - self.betas @ np.log(self.base_prices)

        if parameter_start is None:
            parameter_start = -shares[identified]
        initial = np.asarray(parameter_start, options.dtype).flatten()
        if initial.size != identified.sum():
            raise ValueError(
                f"parameter_start for AIDS demand must have {identified.sum()} own-price coefficients, one for each "
                "product whose first-order condition only involves observed margins."
            )

        self.calibrated = True
        _, stats, errors = self._optimize_margins(observation, ownership, optimization, initial, None, update)
        freeze(self.betas, self.intercepts)
        self.calibrated = not errors
        return stats, errors

    def compute_shares(self, prices: Array, active: Optional[Array] = None) -> Array:
        """Compute revenue shares, which are zero for excluded products."""
        active = self._get_active(active)
        return np.where(active, self.intercepts + self.betas @ np.log(prices), 0)

    def compute_expenditure(self, prices: Array, active: Optional[Array] = None) -> float:
        """Compute total expenditure on inside products."""
        active = self._get_active(active)
        index = self.base_shares[active] @ np.log(prices[active] / self.base_prices[active])
        return self.expenditure * np.exp((1 + self.market_elasticity) * index)

    def compute_quantities(self, prices: Array, active: Optional[Array] = None) -> Array:
        """Compute quantities, :math:`q = wX / p`."""
        return self.compute_shares(prices, active) * self.compute_expenditure(prices, active) / prices

    def compute_jacobian(self, prices: Array, active: Optional[Array] = None) -> Array:
        r"""Compute the Jacobian,

        .. math:: J_{jk} = \frac{X}{p_j p_k}[\beta_{jk} + (1 + \varepsilon_M)w_j w^0_k] - 1\{j = k\}\frac{w_j X}{p_j^2}.

        """
        active = self._get_active(active)
        shares = self.compute_shares(prices, active)
        expenditure = self.compute_expenditure(prices, active)
        base_shares = np.where(active, self.base_shares, 0)
        jacobian = self.betas + (1 + self.market_elasticity) * np.outer(shares, base_shares)
        jacobian[np.diag_indices(self.products)] -= shares
        jacobian *= expenditure / np.outer(prices, prices)
        return jacobian * (active[:, None] & active[None])
