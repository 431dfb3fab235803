r"""Global options.

Attributes
----------
digits : `int`
    Number of digits displayed by status updates. The default number of digits is ``7``. The number of digits can be
    changed to, for example, ``2``, with ``pymerger.options.digits = 2``.
verbose : `bool`
    Whether to output status updates. By default, verbosity is turned on. Verbosity can be turned off with
    ``pymerger.options.verbose = False``.
verbose_tracebacks : `bool`
    Whether to include full tracebacks in error messages. By default, full tracebacks are turned off. These can be
    useful when attempting to find the source of an error message. Tracebacks can be turned on with
    ``pymerger.options.verbose_tracebacks = True``.
verbose_output : `callable`
    Function used to output status updates. The default function is simply ``print``. The function can be changed, for
    example, to include an indicator that statuses are from this package, with
    ``pymerger.options.verbose_output = lambda x: print(f"pymerger: {x}")``. Passing a :class:`logging.Logger` method
    such as ``logger.info`` routes status updates into an application's logging configuration.
flush_output : `bool`
    Whether to call ``sys.stdout.flush()`` after outputting a status update. By default, output is not flushed to
    standard output.
dtype : `dtype`
    The data type used for internal calculations, which is by default ``numpy.float64``. Optimization and equation
    solving routines always receive ``numpy.float64`` arrays.
finite_differences_epsilon : `float`
    Perturbation :math:`\epsilon` used to numerically approximate derivatives with central finite differences:

    .. math:: f'(x) = \frac{f(x + \epsilon / 2) - f(x - \epsilon / 2)}{\epsilon}.

    By default, this is the square root of the machine epsilon: ``numpy.sqrt(numpy.finfo(options.dtype).eps)``. It is
    used to compute gradients of calibration objectives.

singular_tol : `float`
    Tolerance for detecting singular matrices, which is by default ``1 / numpy.finfo(options.dtype).eps``. If the
    linear system used to calibrate own-price parameters or to compute closed-form equilibrium prices has a condition
    number larger than this tolerance, it is considered singular. To disable singularity checks, set
    ``pymerger.options.singular_tol = numpy.inf``.
diversion_perturbation : `float`
    Amount :math:`\epsilon` subtracted from diagonal diversion ratios of :math:`-1`, which is by default ``1e-9``.
    Diagonals of :math:`-1 - \epsilon` keep rows that sum to zero from making calibration degenerate.
diversion_snap_tol : `float`
    Absolute tolerance within which supplied diagonal diversion ratios are treated as :math:`-1` and replaced with
    :math:`-1 - \epsilon`, which is by default the square root of the machine epsilon. Diversion ratios that were
    computed from data and differ from :math:`-1` by rounding error are perturbed like exact ones.
diversion_tol : `float`
    Absolute tolerance used when validating supplied diversion ratios, which is by default ``1e-6``. Diagonal elements
    must be within this tolerance of :math:`-1` and rows cannot sum to more than this tolerance.

"""

import numpy as _np


digits = 7
verbose = True
verbose_tracebacks = False
verbose_output = print
flush_output = False
dtype = _np.float64
finite_differences_epsilon = _np.sqrt(_np.finfo(dtype).eps)
singular_tol = 1 / _np.finfo(dtype).eps
diversion_perturbation = 1e-9
diversion_snap_tol = _np.sqrt(_np.finfo(dtype).eps)
diversion_tol = 1e-6
