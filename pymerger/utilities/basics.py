"""Types, formatting, finite differences, and the error hierarchy shared by demand systems, solvers, and results."""

import functools
import inspect
import re
import sys
import traceback
from typing import Any, Callable, Container, Dict, List, Mapping, Optional, Sequence, Set, Tuple, Type

import numpy as np

from .. import options


# define common types
Array = Any
Options = Dict[str, Any]
Bounds = Tuple[Array, Array]


def extract_field(product_data: Mapping, key: str) -> Optional[Array]:
    """Extract a product-level field as a flat array from a mapping such as a :class:`dict` or a
    :class:`pandas.DataFrame`. Missing and empty fields are ``None``.
    """
    try:
        field = np.asarray(product_data[key])
    except (KeyError, IndexError, TypeError, ValueError):
        return None
    return field.flatten() if field.size > 0 else None


def output(message: Any) -> None:
    """Pass a status update to the configured output function when verbosity is turned on."""
    if not options.verbose:
        return
    if not callable(options.verbose_output):
        raise TypeError("options.verbose_output must be callable.")
    options.verbose_output(str(message))
    if options.flush_output:
        sys.stdout.flush()


def format_seconds(seconds: float) -> str:
    """Format a duration as hours, minutes, and seconds."""
    minutes, seconds = divmod(int(round(seconds)), 60)
    hours, minutes = divmod(minutes, 60)
    return f'{hours:02}:{minutes:02}:{seconds:02}'


def format_number(number: Any) -> str:
    """Format a number in centered scientific notation with the configured number of digits."""
    digits = options.digits
    if not isinstance(digits, int):
        raise TypeError("options.digits must be an int.")
    formatted = f"{float(number):^+{digits + 6}.{digits - 1}E}"
    return formatted.replace("+", " ") if "NAN" in formatted else formatted


def format_options(mapping: Options) -> str:
    """Format solver options, displaying callables by their qualified names."""
    def format_value(value: Any) -> str:
        if callable(value):
            return f'{value.__module__}.{value.__qualname__}'
        return format_number(value) if isinstance(value, float) else str(value)

    return '{' + ', '.join(f'{k}: {format_value(v)}' for k, v in mapping.items()) + '}'


def format_table(
        header: Sequence, *data: Sequence, title: Optional[str] = None, line_indices: Container[int] = ()) -> str:
    """Format a fixed-width table with a border and a vertical line after each column in ``line_indices``. Header
    cells are strings or tuples of strings, which are stacked into rows that are aligned at the bottom.
    """
    columns = [(c,) if isinstance(c, str) else tuple(c) for c in header]
    depth = max(len(c) for c in columns)
    header_rows = [list(r) for r in zip(*[("",) * (depth - len(c)) + c for c in columns])]
    data_rows = [[str(v) for v in r] + [""] * (len(columns) - len(r)) for r in data]
    widths = [max(len(r[i]) for r in header_rows + data_rows) for i in range(len(columns))]

    def format_row(row: Sequence[str]) -> str:
        cells = [f"{c:^{w}}" + ("  |" if i in line_indices else "") for i, (c, w) in enumerate(zip(row, widths))]
        return "  ".join(cells)

    border = "=" * len(format_row([""] * len(widths)))
    lines = [] if title is None else [f"{title}:"]
    lines.append(border)
    lines.extend(format_row(r) for r in header_rows)
    lines.append(format_row(["-" * w for w in widths]))
    lines.extend(format_row(r) for r in data_rows)
    lines.append(border)
    return "\n".join(lines)


def compute_finite_differences(f: Callable[[Array], Array], x: Array) -> Array:
    """Approximate the Jacobian of a function with central finite differences. Column :math:`k` is the derivative with
    respect to :math:`x_k`, and the result is a vector when the function is scalar-valued.
    """
    epsilon = options.finite_differences_epsilon
    steps = epsilon / 2 * np.eye(x.size, dtype=x.dtype)
    columns = [(np.asarray(f(x + s)) - np.asarray(f(x - s))) / epsilon for s in steps]
    return np.array(columns) if np.ndim(columns[0]) == 0 else np.column_stack(columns)


def freeze(*arrays: Optional[Array]) -> None:
    """Make arrays read-only."""
    for array in arrays:
        if isinstance(array, np.ndarray):
            array.setflags(write=False)


class SolverStats(object):
    """Convergence, iteration, and evaluation counts reported by an optimization or iteration routine. Closed-form
    computations are trivially converged.
    """

    converged: bool
    iterations: int
    evaluations: int

    def __init__(self, converged: bool = True, iterations: int = 0, evaluations: int = 0) -> None:
        """Store the counts."""
        self.converged = converged
        self.iterations = iterations
        self.evaluations = evaluations


class StringRepresentation(object):
    """Object that defers to its string representation."""

    def __repr__(self) -> str:
        """Defer to the string representation."""
        return str(self)


def clean_docstring(doc: str) -> str:
    """Convert a reStructuredText docstring into a single line of plain text, writing math without LaTeX markup."""
    def clean_math(match: Any) -> str:
        return ' '.join(re.sub(r'[\\{}]', ' ', match.group(1)).split()).lower()

    doc = re.sub(r':math:`([^`]+)`', clean_math, doc)
    doc = re.sub(r':[a-z\-]+:|`', '', doc)
    return ' '.join(doc.split())


class Error(Exception):
    """Base class for errors and warnings whose message is the class docstring. Errors with the same message are
    considered equal, so repeated problems are only reported once.
    """

    stack: Optional[str]

    def __init__(self) -> None:
        """Store the current traceback if tracebacks are turned on."""
        self.stack = ''.join(traceback.format_stack()) if options.verbose_tracebacks else None

    def __eq__(self, other: Any) -> bool:
        """Compare types and messages."""
        return isinstance(other, Error) and (type(self), str(self)) == (type(other), str(other))

    def __hash__(self) -> int:
        """Hash the type and the message."""
        return hash((type(self).__name__, str(self)))

    def __repr__(self) -> str:
        """Defer to the string representation."""
        return str(self)

    def __str__(self) -> str:
        """Use the cleaned docstring, optionally followed by the stored traceback."""
        message = clean_docstring(inspect.getdoc(self) or type(self).__name__)
        return message if self.stack is None else f"{message} Traceback:\n\n{self.stack}\n"


class DetailedError(Error):
    """Error that also describes the specific data or configuration that caused it."""

    _detail: str

    def __init__(self, detail: str) -> None:
        """Store the detail."""
        super().__init__()
        self._detail = detail

    def __str__(self) -> str:
        """Append the detail."""
        return f"{super().__str__()} {self._detail}"


class NumericalError(Error):
    """Floating point issues that NumPy detected while computing."""

    _messages: Set[str]

    def __init__(self) -> None:
        super().__init__()
        self._messages = set()

    def __str__(self) -> str:
        """Append the NumPy messages."""
        return f"{super().__str__()} Errors encountered: {', '.join(sorted(self._messages))}."


class InversionError(Error):
    """Error for a linear system that could not be solved, reported with the condition number of its matrix."""

    _condition: float

    def __init__(self, matrix: Array) -> None:
        """Compute the condition number."""
        super().__init__()
        from .algebra import compute_condition_number
        self._condition = compute_condition_number(matrix)

    def __str__(self) -> str:
        """Append the condition number."""
        return f"{super().__str__()} Condition number: {format_number(self._condition)}."


class NumericalErrorHandler(object):
    """Decorator for functions that return a list of errors last. NumPy division, overflow, and invalid value issues
    raised while the function runs are collected into a single error of the configured type, which is appended to the
    returned list.
    """

    error: Type[NumericalError]

    def __init__(self, error: Type[NumericalError]) -> None:
        """Store the type of error to report."""
        self.error = error

    def __call__(self, decorated: Callable) -> Callable:
        """Decorate the function."""
        @functools.wraps(decorated)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            """Collect NumPy messages while the function runs."""
            messages: List[str] = []
            collect = lambda message, _: messages.append(message)
            with np.errstate(divide='call', over='call', under='ignore', invalid='call', call=collect):
                returned = decorated(*args, **kwargs)
            if messages:
                error = self.error()
                error._messages.update(messages)
                returned[-1].append(error)
            return returned

        return wrapper
