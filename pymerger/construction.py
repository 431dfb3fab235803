"""Construction of ownership and diversion matrices."""

from typing import Any, Optional

import numpy as np

from . import exceptions, options
from .utilities.basics import Array


def build_ownership(owner: Any, products: Optional[int] = None) -> Array:
    r"""Build an ownership matrix, :math:`O`.

    Element :math:`O_{jk}` is the share of product :math:`k`'s profits that the owner of product :math:`j` internalizes
    when setting the price of :math:`j`. Traditional ownership matrices are built from firm IDs: :math:`O_{jk}` is
    :math:`1` if the same firm produces products :math:`j` and :math:`k`, and is :math:`0` otherwise. Partial ownership
    can be expressed by directly specifying a matrix with values between zero and one.

    Parameters
    ----------
    owner : `array-like or str`
        Either a vector of firm IDs with one ID of any type for each product (a :math:`K \times 1` column is also
        accepted), a :math:`K \times K` matrix with values in :math:`[0, 1]`, or one of the following special cases:

            - ``'monopoly'`` - All products are jointly owned: :math:`O_{jk} = 1` for all :math:`j` and :math:`k`.

            - ``'single'`` - Every firm produces a single product: :math:`O` is the identity matrix.

    products : `int, optional`
        Number of products, :math:`K`. This is required for the special cases and is otherwise used to validate the
        dimensions of ``owner``.

    Returns
    -------
    `ndarray`
        The :math:`K \times K` ownership matrix.

    Examples
    --------
    A merger between the owners of the first two of three single-product firms::

        build_ownership(['A', 'A', 'B'])

    """
    if isinstance(owner, str):
        if products is None:
            raise TypeError("products must be specified when owner is a special case.")
        if owner == 'monopoly':
            return np.ones((products, products), options.dtype)
        if owner == 'single':
            return np.eye(products, dtype=options.dtype)
        raise exceptions.InvalidOwnershipError(f"The special case '{owner}' is not 'monopoly' or 'single'.")

    try:
        owner = np.asarray(owner)
    except (TypeError, ValueError) as exception:
        raise exceptions.InvalidOwnershipError(f"Failed to convert ownership into an array: {exception}.")

    # interpret vectors and columns as firm IDs
    if owner.ndim == 1 or (owner.ndim == 2 and owner.shape[1] == 1 and owner.shape[0] != 1):
        ids = owner.flatten()
        if products is not None and ids.size != products:
            raise exceptions.InvalidOwnershipError(
                f"There are {ids.size} firm IDs but there should be one for each of the {products} products."
            )
        if ids.size == 0:
            raise exceptions.InvalidOwnershipError("There must be at least one firm ID.")
        return (ids[:, None] == ids[None]).astype(options.dtype)

    # validate matrices
    if owner.ndim != 2 or owner.shape[0] != owner.shape[1]:
        raise exceptions.InvalidOwnershipError(f"An ownership matrix must be square, but it has shape {owner.shape}.")
    if products is not None and owner.shape[0] != products:
        raise exceptions.InvalidOwnershipError(
            f"The ownership matrix is {owner.shape[0]} by {owner.shape[1]} but there are {products} products."
        )
    try:
        matrix = owner.astype(options.dtype)
    except (TypeError, ValueError):
        raise exceptions.InvalidOwnershipError("An ownership matrix must be numeric.")
    if not np.isfinite(matrix).all():
        raise exceptions.InvalidOwnershipError("An ownership matrix cannot have missing or infinite values.")
    if (matrix < 0).any() or (matrix > 1).any():
        raise exceptions.InvalidOwnershipError(
            f"Ownership values must be between zero and one, but they are between {matrix.min()} and {matrix.max()}."
        )
    return matrix


def build_diversions(shares: Array, diversions: Optional[Any] = None) -> Array:
    r"""Build or validate a matrix of diversion ratios, :math:`D`.

    Element :math:`D_{jk}` is the fraction of sales lost by product :math:`j` following an increase in its price that
    are captured by product :math:`k`. Diagonal elements are :math:`-1`, off-diagonal elements are non-negative, and
    rows sum to a non-positive number, which is strictly negative when some sales divert to the outside good.

    Diagonal elements within :attr:`options.diversion_snap_tol` of :math:`-1` are replaced by :math:`-1 - \epsilon`
    where :math:`\epsilon` is :attr:`options.diversion_perturbation`. Otherwise, rows that sum to zero make the
    calibration system degenerate.

    Parameters
    ----------
    shares : `array-like`
        Quantity shares, :math:`s`, of each of the :math:`K` products.
    diversions : `array-like, optional`
        A :math:`K \times K` matrix of diversion ratios. Diagonal elements must be within
        :attr:`options.diversion_tol` of :math:`-1`. By default, diversion ratios are proportional to shares:

        .. math:: D_{jk} = \frac{s_k}{1 - s_j}.

    Returns
    -------
    `ndarray`
        The :math:`K \times K` matrix of diversion ratios.

    """
    shares = np.asarray(shares, options.dtype).flatten()
    products = shares.size
    epsilon = options.diversion_perturbation

    # diversion proportional to shares
    if diversions is None:
        denominators = 1 - shares[:, None]
        with np.errstate(divide='ignore', invalid='ignore'):
            matrix = np.where(denominators > 0, shares[None] / denominators, 0)
        matrix = np.broadcast_to(matrix, (products, products)).astype(options.dtype)
        np.fill_diagonal(matrix, -1 - epsilon)
        return matrix

    try:
        matrix = np.array(diversions, options.dtype)
    except (TypeError, ValueError):
        raise exceptions.InputValidationError("Diversion ratios must be numeric.")
    if matrix.shape != (products, products):
        raise exceptions.InputValidationError(
            f"Diversion ratios must be a {products} by {products} matrix, but they have shape {matrix.shape}."
        )
    if not np.isfinite(matrix).all():
        raise exceptions.InputValidationError("Diversion ratios cannot have missing or infinite values.")

    diagonal = np.diag(matrix)
    off_diagonal = matrix[~np.eye(products, dtype=bool)]
    if (np.abs(diagonal + 1) > options.diversion_tol).any():
        raise exceptions.InputValidationError("Diagonal diversion ratios must equal -1.")
    if (off_diagonal < 0).any():
        raise exceptions.InputValidationError("Off-diagonal diversion ratios must be non-negative.")
    if (matrix.sum(axis=1) > options.diversion_tol).any():
        raise exceptions.InputValidationError("Diversion ratios in each row must sum to a non-positive number.")

    snapped = np.abs(diagonal + 1) <= options.diversion_snap_tol
    matrix[np.diag_indices(products)] = np.where(snapped, -1 - epsilon, diagonal)
    return matrix
