"""Linear demand."""

from typing import List, Optional, Tuple

import numpy as np
import scipy.linalg

from .demand import Demand
from .. import exceptions, options
from ..configurations.optimization import Optimization
from ..primitives import MarketObservation
from ..utilities.algebra import precisely_solve
from ..utilities.basics import Array, Error, NumericalErrorHandler, SolverStats, freeze


class Linear(Demand):
    r"""Linear demand, :math:`q = a + Bp`.

    Without symmetry, own-price slopes, :math:`b = \text{diag}(B)`, are calibrated from Bertrand first-order conditions
    and cross-price slopes are implied by diversion ratios: :math:`B_{jk} = -D_{kj} b_k`. Intercepts are chosen so that
    demand passes through observed quantities.

    With symmetry, the slope matrix is symmetric and demand is homogeneous of degree zero in prices, :math:`Bp = 0`,
    which together suffice for demand to be consistent with utility maximization. Slopes are parametrized by the
    cross-price slopes above the diagonal, and own-price slopes are those that make demand homogeneous. Because
    first-order conditions at observed data are linear in these parameters, the identified conditions are solved
    exactly by the parameters closest to those implied by diversion ratios. Any remaining freedom is used to minimize
    the sum of squared differences between implied and observed margins and diversion ratios with an
    :class:`Optimization` routine.

    The prices of excluded products are held fixed, and their quantities are zero.

    Parameters
    ----------
    symmetry : `bool, optional`
        Whether to require that the slope matrix be symmetric and that demand be homogeneous of degree zero in prices.
        This requires at least two products. By default, slopes are symmetric.

    Attributes
    ----------
    symmetry : `bool`
        Whether slopes are symmetric.
    intercepts : `ndarray`
        Intercepts, :math:`a`.
    slopes : `ndarray`
        Slope matrix, :math:`B`.

    """

    name = "Linear"
    symmetry: bool
    intercepts: Array
    slopes: Array

    def __init__(self, symmetry: bool = True) -> None:
        """Store the configuration."""
        super().__init__()
        self.symmetry = symmetry

    def _format_matrix(self) -> Tuple[str, Array]:
        """Display slopes."""
        return "Slopes", self.slopes

    @staticmethod
    def _build_slopes(own: Array, diversions: Array) -> Array:
        """Build the slope matrix implied by own-price slopes and diversion ratios."""
        slopes = -diversions.T * own[None]
        slopes[np.diag_indices_from(slopes)] = own
        return slopes

    @NumericalErrorHandler(exceptions.CalibrationNumericalError)
    def calibrate(
            self, observation: MarketObservation, diversions: Array, ownership: Array,
            optimization: Optional[Optimization] = None, parameter_start: Optional[Array] = None) -> (
            Tuple[SolverStats, List[Error]]):
        """Solve the linear system of first-order conditions for own-price slopes. With symmetry, starting values are
        cross-price slopes above the diagonal in row-major order. By default, they are the averages of cross-price
        slopes implied by diversion ratios and their transposes. Without symmetry, starting values are not used.
        """
        self.products = observation.products
        unit_slopes = lambda i: self._build_slopes(np.eye(self.products, dtype=options.dtype)[i], diversions)
        profile = observation.quantities / observation.prices
        own, errors = self._solve_linear_calibration(observation, ownership, unit_slopes, profile, "own-price slopes")
        if not self.symmetry:
            self.slopes = self._build_slopes(own, diversions)
            self.intercepts = observation.quantities - self.slopes @ observation.prices
            freeze(self.slopes, self.intercepts)
            self.calibrated = not errors
            return SolverStats(), errors

        # without a starting value, cross-price slopes implied by diversion ratios are the target
        if self.products < 2:
            raise exceptions.InputValidationError("Symmetric linear demand requires at least two products.")
        pairs = np.triu_indices(self.products, 1)
        scale = observation.quantities.mean() / observation.prices.mean()
        if parameter_start is None:
            implied = self._build_slopes(np.nan_to_num(own), diversions)
            target = np.clip((implied + implied.T)[pairs] / (2 * scale), 0, None)
        else:
            target = np.asarray(parameter_start, options.dtype).flatten() / scale
            if target.size != pairs[0].size or not np.isfinite(target).all():
                raise ValueError(
                    f"parameter_start for symmetric linear demand must have {pairs[0].size} finite cross-price slopes."
                )

        # identified first-order conditions are linear in the parameters
        basis = self._build_symmetric_basis(observation.prices, scale)
        identified = self.compute_identified(observation, ownership)
        constant, slope = self._compute_foc_system(observation, ownership, basis)
        slope = slope[identified]
        correction = np.linalg.lstsq(slope, -constant[identified] - slope @ target, rcond=None)[0]
        closest = target + correction
        null_space = scipy.linalg.null_space(slope)

        def update(theta: Array) -> None:
            """Update slopes along directions that do not change identified first-order conditions."""
            parameters = closest + null_space @ theta
            self.slopes = np.einsum('p,pjk->jk', parameters, basis)
            self.intercepts = observation.quantities - self.slopes @ observation.prices

        off_diagonal = ~np.eye(self.products, dtype=np.bool_)

        def compute_diversion_residuals() -> Array:
            """Compute differences between implied and supplied diversion ratios, :math:`D_{jk} = -B_{kj} / B_{jj}`."""
            implied_diversions = self.slopes.T / -np.diag(self.slopes)[:, None]
            return (implied_diversions - diversions)[off_diagonal]

        stats = SolverStats()
        errors = []
        self.calibrated = True
        if null_space.shape[1] == 0:
            update(np.zeros(0, options.dtype))
        else:
            initial = np.zeros(null_space.shape[1], options.dtype)
            _, stats, errors = self._optimize_margins(
                observation, ownership, optimization, initial, None, update, compute_diversion_residuals
            )
        if (np.diag(self.slopes) >= 0).any():
            errors.append(exceptions.CalibrationError(
                f"Calibrated own-price slopes must be negative, but they are {np.diag(self.slopes)}."
            ))
        freeze(self.slopes, self.intercepts)
        self.calibrated = not errors
        return stats, errors

    def _build_symmetric_basis(self, prices: Array, scale: float) -> Array:
        """Build the slope matrix for a unit value of each cross-price parameter above the diagonal. Each matrix is
        symmetric and has own-price slopes that make demand homogeneous of degree zero in prices.
        """
        rows, columns = np.triu_indices(self.products, 1)
        basis = np.zeros((rows.size, self.products, self.products), options.dtype)
        for index, (j, k) in enumerate(zip(rows, columns)):
            basis[index, j, k] = basis[index, k, j] = scale
            basis[index, j, j] = -scale * prices[k] / prices[j]
            basis[index, k, k] = -scale * prices[j] / prices[k]
        return basis

    def compute_shares(self, prices: Array, active: Optional[Array] = None) -> Array:
        """Compute quantity shares."""
        quantities = self.compute_quantities(prices, active)
        return quantities / quantities.sum()

    def compute_quantities(self, prices: Array, active: Optional[Array] = None) -> Array:
        """Compute quantities, which are zero for excluded products."""
        active = self._get_active(active)
        return np.where(active, self.intercepts + self.slopes @ prices, 0)

    def compute_jacobian(self, prices: Array, active: Optional[Array] = None) -> Array:
        """The Jacobian is the slope matrix restricted to active products."""
        active = self._get_active(active)
        return self.slopes * (active[:, None] & active[None])

    def compute_closed_form_prices(
            self, costs: Array, ownership: Array, active: Array, price_start: Array) -> Optional[Tuple[Array, Array]]:
        r"""Solve the first-order conditions of active products, :math:`A`, holding the prices of excluded products,
        :math:`I`, at their starting values:

        .. math:: [\text{diag}(d_A) B_{AA} + O_{AA} \circ B_{AA}']p_A = (O_{AA} \circ B_{AA}')c_A - d_A(a_A + B_{AI}p_I)

        where :math:`d = \text{diag}(O)`.
        """
        active = self._get_active(active)
        excluded = ~active
        internalized = np.diag(ownership)[active]
        own_block = self.slopes[np.ix_(active, active)]
        cross_block = self.slopes[np.ix_(active, excluded)]
        weighted = ownership[np.ix_(active, active)] * own_block.T
        matrix = internalized[:, None] * own_block + weighted
        fixed = self.intercepts[active] + cross_block @ price_start[excluded]
        vector = weighted @ costs[active] - internalized * fixed
        prices, _ = precisely_solve(matrix, vector)
        return prices, matrix
