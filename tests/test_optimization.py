"""Tests of optimization routines."""

import numpy as np
import pytest

from pymerger import Optimization
from pymerger.configurations.optimization import ObjectiveResults
from pymerger.utilities.basics import Array, Options


@pytest.mark.parametrize(['lb', 'ub'], [
    pytest.param(-np.inf, np.inf, id="unbounded"),
    pytest.param(-np.inf, 1, id="bounded above"),
    pytest.param(-1, np.inf, id="bounded below"),
    pytest.param(-1, 1, id="bounded above and below")
])
@pytest.mark.parametrize(['method', 'method_options'], [
    pytest.param('slsqp', {}, id="SLSQP"),
    pytest.param('l-bfgs-b', {}, id="L-BFGS-B"),
    pytest.param('trust-constr', {}, id="trust-region"),
    pytest.param('trust-constr', {'keep_feasible': True}, id="trust-region feasible"),
    pytest.param('tnc', {}, id="TNC"),
    pytest.param('nelder-mead', {}, id="Nelder-Mead"),
    pytest.param('powell', {}, id="Powell"),
    pytest.param('cg', {}, id="CG"),
    pytest.param('bfgs', {}, id="BFGS"),
    pytest.param('return', {}, id="Return")
])
@pytest.mark.parametrize('compute_gradient', [
    pytest.param(True, id="analytic gradient"),
    pytest.param(False, id="no analytic gradient")
])
def test_entropy(lb: float, ub: float, method: str, method_options: Options, compute_gradient: bool) -> None:
    """Test that solutions to the entropy maximization problem from Berger, Pietra, and Pietra (1996) are reasonably
    close to the exact solution (this is based on a subset of testing methods from scipy.optimize.tests.test_optimize).
    """
    def objective_function(x: Array) -> ObjectiveResults:
        """Evaluate the objective."""
        K = np.array([1, 0.3, 0.5])
        F = np.array([[1, 1, 1], [1, 1, 0], [1, 0, 1], [1, 0, 0], [1, 0, 0]])
        log_Z = np.log(np.exp(F @ x).sum())
        p = np.exp(F @ x - log_Z)
        objective = log_Z - K @ x
        gradient = F.T @ p - K if compute_gradient else None
        return objective, gradient

    # skip methods that do not support analytic gradients
    if compute_gradient and method in {'nelder-mead', 'powell'}:
        return pytest.skip("This method does not support an analytic gradient.")

    # initialize the configuration and test that it can be formatted
    optimization = Optimization(method, method_options, compute_gradient)
    assert str(optimization)

    # define the exact solution
    exact_values = np.array([0, -0.524869316, 0.487525860])

    # estimate the solution (use the exact values if the optimization routine will just return them)
    start_values = exact_values if method == 'return' else np.zeros_like(exact_values)
    bounds = 3 * [(lb, ub)]
    estimated_values, stats = optimization._optimize(start_values, bounds, objective_function)
    assert stats.converged

    # test that the estimated objective is reasonably close to the exact objective
    exact = objective_function(exact_values)[0]
    estimated = objective_function(estimated_values)[0]
    np.testing.assert_allclose(estimated, exact, rtol=1e-5, atol=0)


@pytest.mark.parametrize(['method', 'tol'], [
    pytest.param('slsqp', 1e-4, id="SLSQP"),
    pytest.param('trust-constr', 1e-3, id="trust-region")
])
def test_constraints(method: str, tol: float) -> None:
    """Test that routines that support constraints minimize a quadratic subject to a linear inequality constraint."""
    def objective_function(x: Array) -> ObjectiveResults:
        """Evaluate a quadratic that is minimized at (2, 2)."""
        return ((x - 2)**2).sum(), 2 * (x - 2)

    constraints = [{
        'type': 'ineq',
        'fun': lambda x: np.array([2 - x.sum()]),
        'jac': lambda _: np.array([[-1.0, -1.0]])
    }]
    estimated_values, stats = Optimization(method)._optimize(np.zeros(2), None, objective_function, constraints)
    assert stats.converged
    np.testing.assert_allclose(estimated_values, [1, 1], rtol=0, atol=tol)


def test_unsupported_constraints() -> None:
    """Test that routines that do not support constraints reject them."""
    constraints = [{'type': 'ineq', 'fun': lambda x: x}]
    with pytest.raises(ValueError):
        Optimization('l-bfgs-b')._optimize(np.zeros(1), None, lambda x: (x @ x, 2 * x), constraints)


@pytest.mark.parametrize(['method', 'method_options', 'compute_gradient'], [
    pytest.param('unknown', None, True, id="unknown method"),
    pytest.param('l-bfgs-b', [], True, id="options not a dict"),
    pytest.param('nelder-mead', None, True, id="gradient with Nelder-Mead"),
    pytest.param('return', {'gtol': 1e-8}, False, id="options for return")
])
def test_invalid_configuration(method: str, method_options: Options, compute_gradient: bool) -> None:
    """Test that invalid configurations are rejected."""
    with pytest.raises(ValueError):
        Optimization(method, method_options, compute_gradient)
