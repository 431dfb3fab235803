"""Abstract demand system shared by all variants."""

import abc
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from .. import exceptions, options
from ..configurations.optimization import Optimization
from ..primitives import MarketObservation
from ..utilities.algebra import precisely_solve
from ..utilities.basics import (
    Array, Bounds, Error, SolverStats, StringRepresentation, compute_finite_differences,
    format_number, format_table
)


class Demand(StringRepresentation, abc.ABC):
    r"""Demand system for differentiated products that can be calibrated to observed market data.

    Every demand system maps a vector of prices, :math:`p`, into quantities, :math:`q(p)`, and their Jacobian,
    :math:`J_{jk} = \partial q_j / \partial p_k`. Given an ownership matrix, :math:`O`, Bertrand first-order conditions
    are

    .. math:: \text{diag}(O) \circ q + (O \circ J')(p - c) = 0,

    which define markups, :math:`\eta = p - c = -(O \circ J')^{-1}(\text{diag}(O) \circ q)`.

    Products can be excluded from the choice set with a vector of ``active`` flags. Excluded products have zero
    quantities and do not enter first-order conditions. How the prices of excluded products affect the remaining ones
    depends on the demand system.

    Attributes
    ----------
    name : `str`
        Name of the demand system.
    products : `int`
        Number of products, :math:`K`, which is known after calibration.
    calibrated : `bool`
        Whether parameters have been calibrated.

    """

    name: str
    products: int
    calibrated: bool

    def __init__(self) -> None:
        """Initialize an uncalibrated demand system."""
        self.products = 0
        self.calibrated = False

    def __str__(self) -> str:
        """Format the calibrated parameters as a string."""
        if not self.calibrated:
            return f"Uncalibrated {self.name} demand."
        sections = [f"{self.name} Demand"]
        scalars = self._format_scalars()
        if scalars:
            sections.append(format_table([n for n, _ in scalars], [format_number(v) for _, v in scalars]))
        matrix_name, matrix = self._format_matrix()
        header = [matrix_name] + [str(i) for i in range(self.products)]
        data = [[str(i)] + [format_number(v) for v in row] for i, row in enumerate(matrix)]
        sections.append(format_table(header, *data, line_indices={0}))
        return "\n\n".join(sections)

    def _format_scalars(self) -> Sequence[Tuple[str, float]]:
        """Scalar parameters that are displayed along with the parameter matrix."""
        return []

    @abc.abstractmethod
    def _format_matrix(self) -> Tuple[str, Array]:
        """The main parameter matrix and its name."""

    def _get_active(self, active: Optional[Array]) -> Array:
        """Validate or default to flags that include all products."""
        if not self.calibrated:
            raise RuntimeError(f"{self.name} demand parameters must be calibrated before they are used.")
        if active is None:
            return np.ones(self.products, np.bool_)
        return np.asarray(active, np.bool_)

    @abc.abstractmethod
    def compute_shares(self, prices: Array, active: Optional[Array] = None) -> Array:
        """Compute the shares that define the demand system: quantity shares for linear and logit demand and revenue
        shares for CES and AIDS demand. Excluded products have zero shares.
        """

    @abc.abstractmethod
    def compute_quantities(self, prices: Array, active: Optional[Array] = None) -> Array:
        """Compute quantities. Excluded products have zero quantities."""

    @abc.abstractmethod
    def compute_jacobian(self, prices: Array, active: Optional[Array] = None) -> Array:
        """Compute the Jacobian of quantities with respect to prices, :math:`J_{jk} = \\partial q_j / \\partial p_k`.
        Rows and columns of excluded products are zero.
        """

    @abc.abstractmethod
    def calibrate(
            self, observation: MarketObservation, diversions: Array, ownership: Array,
            optimization: Optional[Optimization] = None, parameter_start: Optional[Array] = None) -> (
            Tuple[SolverStats, List[Error]]):
        """Calibrate parameters so that Bertrand first-order conditions hold at observed prices, quantities, and
        margins under the pre-merger ownership matrix. Any errors that prevent calibration are returned.
        """

    def compute_elasticities(self, prices: Array, active: Optional[Array] = None) -> Array:
        r"""Compute the matrix of price elasticities, :math:`E_{jk} = J_{jk} p_k / q_j`. Rows of products with zero
        quantities are ``numpy.nan``.
        """
        quantities = self.compute_quantities(prices, active)
        jacobian = self.compute_jacobian(prices, active)
        elasticities = np.full_like(jacobian, np.nan)
        np.divide(jacobian * prices[None], quantities[:, None], out=elasticities, where=quantities[:, None] != 0)
        return elasticities

    def compute_markup_system(
            self, prices: Array, ownership: Array, active: Optional[Array] = None) -> Tuple[Array, Array]:
        r"""Compute the matrix :math:`O \circ J'` and the vector :math:`-\text{diag}(O) \circ q` restricted to active
        products, which together define markups.
        """
        active = self._get_active(active)
        block = np.ix_(active, active)
        quantities = self.compute_quantities(prices, active)[active]
        jacobian = self.compute_jacobian(prices, active)[block]
        matrix = ownership[block] * jacobian.T
        vector = -np.diag(ownership)[active] * quantities
        return matrix, vector

    def compute_markups(self, prices: Array, ownership: Array, active: Optional[Array] = None) -> Array:
        """Compute Bertrand markups. Markups of excluded products are ``numpy.nan``, and all markups are
        ``numpy.nan`` if the system that defines them is singular.
        """
        active = self._get_active(active)
        matrix, vector = self.compute_markup_system(prices, ownership, active)
        markups = np.full(self.products, np.nan, options.dtype)
        markups[active] = precisely_solve(matrix, vector)[0]
        return markups

    def compute_foc(self, prices: Array, costs: Array, ownership: Array, active: Optional[Array] = None) -> Array:
        r"""Compute the Bertrand first-order conditions, :math:`\text{diag}(O) \circ q + (O \circ J')(p - c)`. The
        first-order conditions of excluded products are zero.
        """
        active = self._get_active(active)
        matrix, vector = self.compute_markup_system(prices, ownership, active)
        foc = np.zeros(self.products, options.dtype)
        foc[active] = matrix @ (prices - costs)[active] - vector
        return foc

    def compute_closed_form_prices(
            self, costs: Array, ownership: Array, active: Array, price_start: Array) -> Optional[Tuple[Array, Array]]:
        """Compute equilibrium prices of active products and the matrix of the linear system that defines them, if
        first-order conditions are linear in prices. By default, there is no closed form.
        """
        return None

    @staticmethod
    def compute_identified(observation: MarketObservation, ownership: Array) -> Array:
        """Flag products whose first-order conditions only involve observed margins."""
        involved = ownership > 0
        return ~(involved & ~observation.margins_observed[None]).any(axis=1)

    def _validate_quantities(self, observation: MarketObservation) -> None:
        """Validate that all quantities are positive, which is required by demand systems that take logs."""
        if (observation.quantities <= 0).any():
            raise exceptions.InputValidationError(f"{self.name} demand requires all quantities to be positive.")

    @staticmethod
    def _compute_foc_system(
            observation: MarketObservation, ownership: Array, unit_jacobians: Sequence[Array]) -> Tuple[Array, Array]:
        """Compute the constant and slope of first-order conditions at observed data when parameters enter the Jacobian
        linearly. The constant is the diagonal of the ownership matrix times quantities, and each column of the slope
        is the first-order condition implied by the Jacobian of a single unit parameter. Unobserved markups are zero,
        so only the conditions of identified products are meaningful.
        """
        markups = np.where(observation.margins_observed, observation.margins, 0) * observation.prices
        constant = np.diag(ownership) * observation.quantities
        slope = np.column_stack([(ownership * j.T) @ markups for j in unit_jacobians])
        return constant, slope

    @staticmethod
    def _extrapolate(parameters: Array, known: Array, profile: Array) -> Array:
        """Fill in unknown parameters with the scale of the profile that best fits known parameters."""
        extrapolated = parameters.copy()
        if not known.all():
            scale = profile[known] @ parameters[known] / (profile[known] @ profile[known])
            extrapolated[~known] = scale * profile[~known]
        return extrapolated

    def _solve_linear_calibration(
            self, observation: MarketObservation, ownership: Array, compute_unit_jacobian: Callable[[int], Array],
            profile: Array, parameter_name: str) -> Tuple[Array, List[Error]]:
        """Solve for own-price parameters that enter the Jacobian linearly.

        The first-order condition of each product only involves the own-price parameter of that product, so the
        identified conditions are solved exactly for the parameters of identified products. Parameters of other
        products are a scale of the profile, which is chosen to best fit the parameters of identified products.
        """
        errors: List[Error] = []
        identified = self.compute_identified(observation, ownership)
        unit_jacobians = [compute_unit_jacobian(i) for i in range(self.products)]
        constant, slope = self._compute_foc_system(observation, ownership, unit_jacobians)
        subsystem = slope[np.ix_(identified, identified)]
        parameters = np.full(self.products, np.nan, options.dtype)
        parameters[identified], successful = precisely_solve(subsystem, -constant[identified])
        if not successful:
            errors.append(exceptions.SingularSystemError(subsystem))
            return parameters, errors

        parameters = self._extrapolate(parameters, identified, profile)
        if (parameters >= 0).any():
            errors.append(exceptions.CalibrationError(
                f"Calibrated {parameter_name} must be negative, but they are {parameters}."
            ))
        return parameters, errors

    def _optimize_margins(
            self, observation: MarketObservation, ownership: Array, optimization: Optional[Optimization],
            initial: Array, bounds: Optional[Bounds], update: Callable[[Array], None],
            compute_additional_residuals: Optional[Callable[[], Array]] = None) -> (
            Tuple[Array, SolverStats, List[Error]]):
        """Choose parameters that minimize the sum of squared differences between implied and observed margins, along
        with the squares of any additional residuals. The update function should store parameters that are implied by
        those being optimized.
        """
        errors: List[Error] = []
        if optimization is None:
            optimization = Optimization('l-bfgs-b', {'gtol': 1e-10, 'ftol': 1e-14})
        observed = observation.margins_observed

        def compute_objective(theta: Array) -> float:
            """Compute the sum of squared residuals."""
            update(theta)
            markups = self.compute_markups(observation.prices, ownership)
            residuals = markups[observed] / observation.prices[observed] - observation.margins[observed]
            if compute_additional_residuals is not None:
                residuals = np.r_[residuals, compute_additional_residuals()]
            return residuals @ residuals

        def objective_function(theta: Array) -> Tuple[float, Optional[Array]]:
            """Compute the objective and, if needed, its gradient."""
            gradient = None
            if optimization._compute_gradient:
                gradient = compute_finite_differences(compute_objective, theta)
            return compute_objective(theta), gradient

        raw_bounds = None if bounds is None else list(zip(*bounds))
        theta, stats = optimization._optimize(initial, raw_bounds, objective_function)
        update(theta)
        if not stats.converged:
            errors.append(exceptions.CalibrationError(
                f"The optimization routine failed to converge after {stats.iterations} iterations and "
                f"{stats.evaluations} objective evaluations."
            ))
        return theta, stats, errors

