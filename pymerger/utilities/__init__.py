"""General functionality."""

from .basics import (
    extract_field, output, format_seconds, format_number, format_options, format_table, compute_finite_differences,
    freeze, SolverStats, StringRepresentation
)
from .algebra import compute_condition_number, precisely_solve
