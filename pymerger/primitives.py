"""Primitive data structures that constitute the foundation of a merger simulation."""

from typing import Any, List, Mapping, Optional, Sequence

import numpy as np

from . import exceptions, options
from .utilities.basics import Array, StringRepresentation, extract_field, format_number, format_table, freeze


class MarketObservation(StringRepresentation):
    r"""Validated and immutable pre-merger data for a single market.

    Attributes
    ----------
    prices : `ndarray`
        Observed prices, :math:`p`, which are all positive.
    quantities : `ndarray`
        Observed quantities, :math:`q`, which are all non-negative.
    margins : `ndarray`
        Observed margins, :math:`m = (p - c) / p`, which are either between zero and one or ``numpy.nan`` when they are
        not observed.
    labels : `list of str`
        Product labels.
    shares : `ndarray`
        Quantity shares, :math:`q / \sum_k q_k`.
    revenues : `ndarray`
        Revenues, :math:`p q`.
    products : `int`
        Number of products, :math:`K`.

    """

    prices: Array
    quantities: Array
    margins: Array
    labels: List[str]
    shares: Array
    revenues: Array
    products: int

    def __init__(
            self, prices: Any, quantities: Any, margins: Optional[Any] = None,
            labels: Optional[Sequence[Any]] = None) -> None:
        """Validate and store the data."""
        prices = self._to_vector(prices, 'prices')
        quantities = self._to_vector(quantities, 'quantities')
        products = prices.size
        margins = np.full(products, np.nan, options.dtype) if margins is None else self._to_vector(margins, 'margins')

        if products == 0:
            raise exceptions.InputValidationError("There must be at least one product.")
        for name, vector in [('quantities', quantities), ('margins', margins)]:
            if vector.size != products:
                raise exceptions.InputValidationError(
                    f"There are {vector.size} {name} but there are {products} prices."
                )
        if not np.isfinite(prices).all() or (prices <= 0).any():
            raise exceptions.InputValidationError("Prices must be positive and finite.")
        if not np.isfinite(quantities).all() or (quantities < 0).any():
            raise exceptions.InputValidationError("Quantities must be non-negative and finite.")
        if quantities.sum() <= 0:
            raise exceptions.InputValidationError("At least one quantity must be positive.")
        observed = ~np.isnan(margins)
        if (np.isinf(margins) | (observed & ((np.nan_to_num(margins) < 0) | (np.nan_to_num(margins) > 1)))).any():
            raise exceptions.InputValidationError("Margins must be between zero and one or missing.")

        # default to generic labels
        if labels is None:
            labels = [f'Prod{i + 1}' for i in range(products)]
        labels = [str(l) for l in np.asarray(labels, dtype=object).flatten()]
        if len(labels) != products:
            raise exceptions.InputValidationError(f"There are {len(labels)} labels but there are {products} products.")
        if len(set(labels)) != products:
            raise exceptions.InputValidationError("Product labels must be unique.")

        self.prices = prices
        self.quantities = quantities
        self.margins = margins
        self.labels = labels
        self.products = products
        self.shares = quantities / quantities.sum()
        self.revenues = prices * quantities
        freeze(self.prices, self.quantities, self.margins, self.shares, self.revenues)

    @classmethod
    def from_data(cls, product_data: Mapping) -> 'MarketObservation':
        """Build an observation from a structured array-like object with ``prices``, ``quantities``, and optionally
        ``margins`` and ``labels`` fields, such as a :class:`pandas.DataFrame` or a :class:`dict`.
        """
        prices = extract_field(product_data, 'prices')
        quantities = extract_field(product_data, 'quantities')
        if prices is None or quantities is None:
            raise KeyError("product_data must have prices and quantities fields.")
        margins = extract_field(product_data, 'margins')
        labels = extract_field(product_data, 'labels')
        return cls(prices, quantities, margins, labels)

    @staticmethod
    def _to_vector(values: Any, name: str) -> Array:
        """Convert array-like data into a one-dimensional vector."""
        try:
            vector = np.array(values, options.dtype)
        except (TypeError, ValueError):
            raise exceptions.InputValidationError(f"The {name} must be numeric.")
        if vector.ndim > 1 and sum(d > 1 for d in vector.shape) > 1:
            raise exceptions.InputValidationError(f"The {name} must be one-dimensional.")
        return vector.flatten()

    def __str__(self) -> str:
        """Format the data as a string."""
        header = ["Product", "Price", "Quantity", "Share", "Margin"]
        data = [
            [l, format_number(p), format_number(q), format_number(s), format_number(m)]
            for l, p, q, s, m in zip(self.labels, self.prices, self.quantities, self.shares, self.margins)
        ]
        return format_table(header, *data, title="Market Observation")

    @property
    def margins_observed(self) -> Array:
        """Flags for products with observed margins."""
        return ~np.isnan(self.margins)
