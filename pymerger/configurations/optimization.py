"""Optimization routines used for calibration and constrained price solves."""

import functools
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import scipy.optimize

from ..utilities.basics import Array, Options, SolverStats, StringRepresentation, format_options


# objective function types
ObjectiveResults = Tuple[float, Optional[Array]]
ObjectiveFunction = Callable[[Array], ObjectiveResults]
Constraint = Dict[str, Any]


class Optimization(StringRepresentation):
    r"""Configuration for solving optimization problems.

    Optimization is used to calibrate the parameters of the symmetric Linear, Logit, CES, and AIDS demand systems, which
    minimize the sum of squared differences between implied and observed margins, and to compute Linear demand
    equilibrium prices when the closed-form solution implies negative quantities.

    Parameters
    ----------
    method : `str or callable`
        The optimization routine that will be used. The following routines support parameter bounds and use analytic
        gradients:

            - ``'l-bfgs-b'`` - Uses the :func:`scipy.optimize.minimize` L-BFGS-B routine. This is the default routine
              for calibration.

            - ``'slsqp'`` - Uses the :func:`scipy.optimize.minimize` SLSQP routine. This routine also supports
              nonlinear inequality constraints and is the default routine for constrained Linear demand prices.

            - ``'trust-constr'`` - Uses the :func:`scipy.optimize.minimize` trust-region routine, which also supports
              constraints.

            - ``'tnc'`` - Uses the :func:`scipy.optimize.minimize` TNC routine.

        The following routines also use analytic gradients but will ignore parameter bounds:

            - ``'cg'`` - Uses the :func:`scipy.optimize.minimize` CG routine.

            - ``'bfgs'`` - Uses the :func:`scipy.optimize.minimize` BFGS routine.

        The following routines do not use analytic gradients and will also ignore parameter bounds:

            - ``'nelder-mead'`` - Uses the :func:`scipy.optimize.minimize` Nelder-Mead routine.

            - ``'powell'`` - Uses the :func:`scipy.optimize.minimize` Powell routine.

        The following trivial routine can be used to evaluate an objective at specific parameter values:

            - ``'return'`` - Assume that the initial parameter values are the optimal ones.

        Also accepted is a custom callable method with the following form::

            method(initial, bounds, constraints, objective_function, iteration_callback, **options) ->
                (final, converged)

        where ``initial`` is an array of initial parameter values, ``bounds`` is a list of ``(min, max)`` pairs for each
        element in ``initial`` or ``None``, ``constraints`` is a list of :func:`scipy.optimize.minimize` constraint
        dictionaries, ``objective_function`` is a callable of the form ``objective_function(x) -> (objective,
        gradient)``, ``iteration_callback`` should be called without any arguments after each major iteration,
        ``final`` is an array of optimized parameter values, and ``converged`` is a flag for whether the routine
        converged. The ``gradient`` is ``None`` if ``compute_gradient`` is ``False``.

    method_options : `dict, optional`
        Options for the optimization routine, which for non-custom routines other than ``'return'`` will be passed to
        ``options`` in :func:`scipy.optimize.minimize`, with the exception of ``'keep_feasible'``, which is passed to
        any ``scipy.optimize.Bounds``. Refer to the SciPy documentation for information about which options are
        available for each optimization routine.
    compute_gradient : `bool, optional`
        Whether to compute a gradient during optimization, which must be ``False`` if ``method`` does not use
        gradients. By default, gradients are computed. Calibration objectives use central finite differences with
        :attr:`options.finite_differences_epsilon`.

    Examples
    --------
    The default routine used for calibration is configured with::

        Optimization('l-bfgs-b', {'gtol': 1e-10, 'ftol': 1e-14})

    """

    _optimizer: functools.partial
    _description: str
    _method_options: Options
    _supports_bounds: bool
    _supports_constraints: bool
    _compute_gradient: bool

    def __init__(
            self, method: Union[str, Callable], method_options: Optional[Options] = None,
            compute_gradient: bool = True) -> None:
        """Validate the method and set default options."""
        simple_methods = {
            'nelder-mead': "the Nelder-Mead algorithm implemented in SciPy",
            'powell': "the modified Powell algorithm implemented in SciPy",
        }
        unbounded_methods = {
            'cg': "the conjugate gradient algorithm implemented in SciPy",
            'bfgs': "the BFGS algorithm implemented in SciPy",
        }
        bounded_methods = {
            'l-bfgs-b': "the L-BFGS-B algorithm implemented in SciPy",
            'tnc': "the truncated Newton algorithm implemented in SciPy",
            'slsqp': "Sequential Least SQuares Programming implemented in SciPy",
            'trust-constr': "the trust-region routine implemented in SciPy",
        }
        methods = {**simple_methods, **unbounded_methods, **bounded_methods, 'return': None}

        # validate the configuration
        if method not in methods and not callable(method):
            raise ValueError(f"method must be one of {list(methods)} or a callable object.")
        if method_options is not None and not isinstance(method_options, dict):
            raise ValueError("method_options must be None or a dict.")
        if method in simple_methods and compute_gradient:
            raise ValueError(f"compute_gradient must be False when method is '{method}'.")

        self._compute_gradient = compute_gradient
        self._supports_bounds = callable(method) or method in bounded_methods
        self._supports_constraints = callable(method) or method in {'slsqp', 'trust-constr'}
        if method_options is None:
            method_options = {}

        # options are simply passed along to custom methods
        if callable(method):
            self._optimizer = functools.partial(method)
            self._description = "a custom method"
            self._method_options = method_options
            return

        # identify the non-custom optimizer
        self._method_options = method_options.copy()
        if method == 'return':
            self._optimizer = functools.partial(return_optimizer)
            self._description = "a trivial routine that returns the initial parameters"
            if self._method_options:
                raise ValueError("The return method does not support any options.")
        else:
            self._optimizer = functools.partial(scipy_optimizer, method=method, compute_gradient=compute_gradient)
            self._description = methods[method]

    def __str__(self) -> str:
        """Format the configuration as a string."""
        description = f"{self._description} {'with' if self._compute_gradient else 'without'} gradients"
        return f"Configured to optimize using {description} and options {format_options(self._method_options)}."

    def _optimize(
            self, initial: Array, bounds: Optional[Iterable[Tuple[float, float]]],
            objective_function: ObjectiveFunction, constraints: Sequence[Constraint] = ()) -> Tuple[Array, SolverStats]:
        """Optimize parameters to minimize a scalar objective, optionally subject to constraints."""
        if constraints and not self._supports_constraints:
            raise ValueError(f"The optimization routine {self._description} does not support constraints.")

        iterations = evaluations = 0

        def iteration_callback() -> None:
            """Count the number of major iterations."""
            nonlocal iterations
            iterations += 1

        def objective_wrapper(raw_values: Any) -> ObjectiveResults:
            """Normalize arrays so they work with all types of routines and count objective evaluations."""
            nonlocal evaluations
            evaluations += 1
            raw_values = np.asanyarray(raw_values)
            values = raw_values.reshape(initial.shape).astype(initial.dtype, copy=False)
            objective, gradient = objective_function(values)
            return (
                float(objective),
                None if gradient is None else np.asarray(gradient).astype(raw_values.dtype, copy=False).flatten()
            )

        raw_initial = initial.astype(np.float64, copy=False).flatten()
        raw_bounds = None if bounds is None or not self._supports_bounds else [(float(l), float(u)) for l, u in bounds]
        raw_final, converged = self._optimizer(
            raw_initial, raw_bounds, list(constraints), objective_wrapper, iteration_callback, **self._method_options
        )
        final = np.asanyarray(raw_final).astype(initial.dtype, copy=False).reshape(initial.shape)
        return final, SolverStats(converged, iterations, evaluations)


def return_optimizer(initial_values: Array, *_: Any, **__: Any) -> Tuple[Array, bool]:
    """Assume the initial values are the optimal ones."""
    return initial_values, True


def scipy_optimizer(
        initial_values: Array, bounds: Optional[List[Tuple[float, float]]], constraints: List[Constraint],
        objective_function: ObjectiveFunction, iteration_callback: Callable[[], None], method: str,
        compute_gradient: bool, **scipy_options: Any) -> Tuple[Array, bool]:
    """Optimize with a SciPy method."""
    cache: Optional[Tuple[Array, ObjectiveResults]] = None

    def evaluate(values: Array) -> ObjectiveResults:
        """Return a possibly cached objective value and gradient."""
        nonlocal cache
        if cache is None or not np.array_equal(values, cache[0]):
            cache = (values.copy(), objective_function(values))
        return cache[1]

    # by default use the BFGS approximation for the Hessian
    hess = scipy_options.pop('hess', scipy.optimize.BFGS() if method == 'trust-constr' else None)

    # extract and configure any bound feasibility
    keep_feasible = scipy_options.pop('keep_feasible', None)
    scipy_bounds: Any = bounds
    if bounds is not None and keep_feasible is not None:
        lb, ub = zip(*bounds)
        scipy_bounds = scipy.optimize.Bounds(lb, ub, keep_feasible)

    results = scipy.optimize.minimize(
        lambda x: evaluate(x)[0], initial_values, method=method,
        jac=(lambda x: evaluate(x)[1]) if compute_gradient else None, hess=hess, bounds=scipy_bounds,
        constraints=constraints if constraints else (), callback=lambda *_: iteration_callback(), options=scipy_options
    )
    return results.x, results.success
