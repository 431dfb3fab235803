"""Fixed point iteration routines used to solve for equilibrium prices."""

import functools
from typing import Any, Callable, Optional, Tuple, Union

import numpy as np
import scipy.optimize

from ..utilities.basics import Array, Options, SolverStats, StringRepresentation, format_options


# define contraction function types
ContractionResults = Tuple[Array, Optional[Array]]
ContractionFunction = Callable[[Array], ContractionResults]


class Iteration(StringRepresentation):
    r"""Configuration for solving the fixed point problem :math:`p = c + \eta(p)` that defines Bertrand prices.

    The problem is solved in log prices, :math:`\log p = \log[c + \eta(p)]`, so routines never evaluate markups at
    non-positive prices.

    Parameters
    ----------
    method : `str or callable`
        The fixed point iteration routine that will be used. The following routines do not use analytic Jacobians:

            - ``'simple'`` - Non-accelerated iteration of the markup equation.

            - ``'squarem'`` - SQUAREM acceleration method of :ref:`references:Varadhan and Roland (2008)`. This
              implementation uses a first-order squared non-monotone extrapolation scheme.

            - ``'df-sane'`` - Use the :func:`scipy.optimize.root` derivative-free spectral method. This is the default
              routine for equilibrium prices, and is the same method as the ``BBsolve`` routine of the R package
              ``BB``.

            - ``'broyden1'``, ``'broyden2'``, ``'anderson'``, ``'diagbroyden'``, and ``'krylov'`` - Use the
              corresponding :func:`scipy.optimize.root` quasi-Newton method.

        The following routines can use analytic Jacobians of the contraction:

            - ``'hybr'`` - Use the :func:`scipy.optimize.root` modification of the Powell hybrid method implemented in
              MINIPACK.

            - ``'lm'`` - Use the :func:`scipy.optimize.root` modification of the Levenberg-Marquardt algorithm
              implemented in MINIPACK.

        The following trivial routine can be used to simply return the starting prices:

            - ``'return'`` - Assume that the starting prices are equilibrium prices.

        Also accepted is a custom callable method with the following form::

            method(initial, contraction, callback, **options) -> (final, converged)

        where ``initial`` is an array of starting log prices, ``contraction`` is a callable of the form
        ``contraction(x0) -> (x1, jacobian)``, ``callback`` should be called without any arguments after each major
        iteration, ``final`` is an array of final log prices, and ``converged`` is a flag for whether the routine
        converged. The ``jacobian`` is ``None`` unless ``compute_jacobian`` is ``True``.

        If the contraction produces infinities or null values, the ``'simple'`` and ``'squarem'`` routines stop at the
        last finite iterate and are not considered to have converged. SciPy routines are considered to have converged
        only if they report success and the contraction is finite at their final values.

    method_options : `dict, optional`
        Options for the fixed point iteration routine.

        For SciPy routines, these options will be passed to ``options`` in :func:`scipy.optimize.root`. By default, the
        norm used by routines that accept one is the :math:`\ell^\infty`-norm.

        The ``'simple'`` and ``'squarem'`` methods support the following options:

            - **max_evaluations** : (`int`) - Maximum number of contraction mapping evaluations. The default value is
              ``5000``.

            - **atol** : (`float`) - Absolute tolerance for convergence of the configured norm. The default value is
              ``1e-12``.

            - **rtol** (`float`) - Relative tolerance for convergence of the configured norm. The default value is zero.

            - **norm** : (`callable`) - The norm to be used. By default, the :math:`\ell^\infty`-norm is used.

        The ``'squarem'`` routine also accepts ``scheme`` (``1``, ``2``, or the default ``3``), ``step_min`` (default
        ``1.0``), ``step_max`` (default ``1.0``), and ``step_factor`` (default ``4.0``), which mirror the options of the
        R package ``SQUAREM``.

    compute_jacobian : `bool, optional`
        Whether to compute an analytic Jacobian of the contraction. This is only supported by ``'hybr'`` and ``'lm'``,
        and by default Jacobians are numerically approximated by these routines.

    Examples
    --------
    The default routine used for non-linear demand systems is configured with::

        Iteration('df-sane', {'ftol': 1e-10, 'fatol': 1e-10, 'maxfev': 5000})

    """

    _iterator: functools.partial
    _description: str
    _method_options: Options
    _compute_jacobian: bool

    def __init__(self, method: Union[str, Callable], method_options: Optional[Options] = None,
                 compute_jacobian: bool = False) -> None:
        """Validate the method and configure default options."""
        scipy_methods = {
            'broyden1': "Broyden's good method implemented in SciPy",
            'broyden2': "Broyden's bad method implemented in SciPy",
            'anderson': "Anderson's method implemented in SciPy",
            'diagbroyden': "Broyden's diagonal method implemented in SciPy",
            'krylov': "the Krylov method implemented in SciPy",
            'df-sane': "the derivative-free spectral method implemented in SciPy",
            'hybr': "the modified Powell hybrid method implemented in MINIPACK via SciPy",
            'lm': "the modified Levenberg-Marquardt algorithm implemented in MINIPACK via SciPy",
        }
        methods = {
            'simple': (functools.partial(simple_iterator), "no acceleration"),
            'squarem': (functools.partial(squarem_iterator), "the SQUAREM acceleration method"),
            'return': (functools.partial(return_iterator), "a trivial routine that returns the starting prices"),
            **{k: (functools.partial(scipy_iterator, method=k), d) for k, d in scipy_methods.items()}
        }

        # validate the configuration
        if method not in methods and not callable(method):
            raise ValueError(f"method must be one of {list(methods.keys())} or a callable object.")
        if method_options is not None and not isinstance(method_options, dict):
            raise ValueError("method_options must be None or a dict.")
        if compute_jacobian and not callable(method) and method not in {'hybr', 'lm'}:
            raise ValueError(f"compute_jacobian must be False when method is '{method}'.")

        self._compute_jacobian = compute_jacobian
        if method_options is None:
            method_options = {}

        # options are simply passed along to custom methods
        if callable(method):
            self._iterator = functools.partial(method)
            self._description = "a custom method"
            self._method_options = method_options
            return

        # identify the iterator and set default options
        self._method_options = {}
        self._iterator, self._description = methods[method]
        if method in {'simple', 'squarem'}:
            self._method_options.update({'atol': 1e-12, 'rtol': 0, 'max_evaluations': 5000, 'norm': infinity_norm})
            if method == 'squarem':
                self._method_options.update({'scheme': 3, 'step_min': 1.0, 'step_max': 1.0, 'step_factor': 4.0})
        elif method in scipy_methods:
            self._iterator = functools.partial(self._iterator, compute_jacobian=compute_jacobian)
            if method == 'df-sane':
                self._method_options['fnorm'] = infinity_norm
            elif method not in {'hybr', 'lm'}:
                self._method_options['tol_norm'] = infinity_norm

        self._method_options.update(method_options)

        # validate options for non-SciPy routines
        if method == 'return' and self._method_options:
            raise ValueError("The return method does not support any options.")
        if method in {'simple', 'squarem'}:
            for key in ['atol', 'rtol']:
                if not isinstance(self._method_options[key], (float, int)) or self._method_options[key] < 0:
                    raise ValueError(f"The iteration option {key} must be a nonnegative float.")
            if self._method_options['atol'] == self._method_options['rtol'] == 0:
                raise ValueError("atol and rtol cannot both be zero.")
            max_evaluations = self._method_options['max_evaluations']
            if not isinstance(max_evaluations, int) or max_evaluations < 1:
                raise ValueError("The iteration option max_evaluations must be a positive int.")
            if not callable(self._method_options['norm']):
                raise ValueError("The iteration option norm must be callable.")
        if method == 'squarem':
            if self._method_options['scheme'] not in {1, 2, 3}:
                raise ValueError("The iteration option scheme must be 1, 2, or 3.")
            step_min = self._method_options['step_min']
            step_max = self._method_options['step_max']
            if not isinstance(step_min, float) or not isinstance(step_max, float) or step_max <= 0:
                raise ValueError("The iteration options step_min and step_max must be floats with step_max positive.")
            if step_min > step_max:
                raise ValueError("The iteration option step_min must be smaller than step_max.")
            if not isinstance(self._method_options['step_factor'], float) or self._method_options['step_factor'] <= 0:
                raise ValueError("The iteration option step_factor must be a positive float.")

    def __str__(self) -> str:
        """Format the configuration as a string."""
        description = f"{self._description} {'with' if self._compute_jacobian else 'without'} analytic Jacobians"
        return f"Configured to iterate using {description} with options {format_options(self._method_options)}."

    def _iterate(self, initial: Array, contraction: ContractionFunction) -> Tuple[Array, SolverStats]:
        """Solve a fixed point problem, counting major iterations and contraction evaluations."""
        iterations = evaluations = 0

        def iteration_callback() -> None:
            """Count the number of major iterations."""
            nonlocal iterations
            iterations += 1

        def contraction_wrapper(raw_values: Any) -> ContractionResults:
            """Normalize arrays so they work with all types of routines."""
            nonlocal evaluations
            evaluations += 1
            raw_values = np.asarray(raw_values)
            values = raw_values.reshape(initial.shape).astype(initial.dtype, copy=False)
            values, jacobian = contraction(values)
            return (
                values.astype(raw_values.dtype, copy=False).reshape(raw_values.shape),
                None if jacobian is None else jacobian.astype(raw_values.dtype, copy=False)
            )

        raw_initial = initial.astype(np.float64, copy=False).flatten()
        raw_final, converged = self._iterator(
            raw_initial, contraction_wrapper, iteration_callback, **self._method_options
        )
        final = np.asarray(raw_final).astype(initial.dtype, copy=False).reshape(initial.shape)
        return final, SolverStats(converged, iterations, evaluations)


def infinity_norm(x: Array) -> float:
    """Compute the infinity norm of a vector."""
    return np.abs(x).max() if x.size > 0 else 0.0


def return_iterator(initial: Array, *_: Any, **__: Any) -> Tuple[Array, bool]:
    """Assume the starting values are the fixed point."""
    return initial, True


def scipy_iterator(
        initial: Array, contraction: ContractionFunction, iteration_callback: Callable[[], None], method: str,
        compute_jacobian: bool, **scipy_options: Any) -> Tuple[Array, bool]:
    """Apply a SciPy root finding method to the residual of the fixed point. The routine is considered to have
    converged only if it reports success and the contraction is finite at its final values, so trial values at which
    the contraction is undefined do not by themselves cause a failure.
    """
    callback = None if method in {'hybr', 'lm'} else lambda *_: iteration_callback()
    if not all_finite(contraction(initial)[0]):
        return initial, False

    def residual(x: Array) -> Union[Tuple[Array, Array], Array]:
        """Transform the fixed point into a root-finding problem."""
        x0, (x, jacobian) = x, contraction(x)
        if not all_finite(x, jacobian):
            # the spectral line search backtracks from infinite residuals, and other routines stop at the last input
            if method == 'df-sane':
                return np.full_like(x0, np.inf)
            x = x0
            if jacobian is not None:
                jacobian = np.zeros_like(jacobian)
        if callback is None:
            iteration_callback()
        if jacobian is None:
            return x0 - x
        return x0 - x, np.eye(x.size) - jacobian

    results = scipy.optimize.root(
        residual, initial, method=method, jac=compute_jacobian or None, callback=callback, options=scipy_options
    )
    return results.x, results.success and all_finite(contraction(results.x)[0])


def simple_iterator(
        initial: Array, contraction: ContractionFunction, iteration_callback: Callable[[], None], max_evaluations: int,
        atol: float, rtol: float, norm: Callable[[Array], float]) -> Tuple[Array, bool]:
    """Apply simple fixed point iteration with no acceleration."""
    x = initial
    failed = False
    evaluations = 0
    while True:
        x0, x = x, contraction(x)[0]
        if not all_finite(x):
            x = x0
            failed = True
            break
        iteration_callback()
        evaluations += 1
        if termination_check(x, x - x0, atol, rtol, norm):
            break
        if evaluations >= max_evaluations:
            failed = True
            break

    return x, not failed


def squarem_iterator(
        initial: Array, contraction: ContractionFunction, iteration_callback: Callable[[], None], max_evaluations: int,
        atol: float, rtol: float, norm: Callable[[Array], float], scheme: int, step_min: float, step_max: float,
        step_factor: float) -> Tuple[Array, bool]:
    """Apply the SQUAREM acceleration method for fixed point iteration."""
    x = initial
    evaluations = 0

    def step(x0: Array) -> Tuple[Array, bool, bool]:
        """Take one contraction step and report whether it failed or converged."""
        nonlocal evaluations
        x1 = contraction(x0)[0]
        evaluations += 1
        if not all_finite(x1):
            return x0, True, False
        return x1, False, termination_check(x1, x1 - x0, atol, rtol, norm)

    while True:
        x0 = x
        x1, failed, converged = step(x0)
        if failed or converged or evaluations >= max_evaluations:
            x = x1
            break
        x2, failed, converged = step(x1)
        if failed or converged or evaluations >= max_evaluations:
            x = x2
            break

        # compute the step length
        r = x1 - x0
        v = (x2 - x1) - r
        with np.errstate(divide='ignore', invalid='ignore'):
            if scheme == 1:
                alpha = (r @ v) / (v @ v)
            elif scheme == 2:
                alpha = (r @ r) / (r @ v)
            else:
                alpha = -np.sqrt((r @ r) / (v @ v))
        if not np.isfinite(alpha):
            alpha = -1.0

        # bound the step length and update its bounds
        alpha = -np.maximum(step_min, np.minimum(step_max, -alpha))
        if -alpha == step_max:
            step_max *= step_factor
        if -alpha == step_min and step_min < 0:
            step_min *= step_factor

        # acceleration step followed by a stabilizing contraction step
        accelerated = x0 - 2 * alpha * r + alpha**2 * v
        x, failed, converged = step(accelerated if all_finite(accelerated) else x2)
        iteration_callback()
        if failed:
            x = x2
            break
        if converged or evaluations >= max_evaluations:
            break

    return x, not failed and converged


def all_finite(*arrays: Optional[Array]) -> bool:
    """Validate that multiple arrays are either None or all finite."""
    return all(a is None or np.isfinite(a).all() for a in arrays)


def termination_check(x: Array, residual: Array, atol: float, rtol: float, norm: Callable[[Array], float]) -> bool:
    """Check whether the residual indicates that iteration should be terminated."""
    tol = atol
    if rtol > 0:
        tol += rtol * norm(x)
    return norm(residual) < tol
