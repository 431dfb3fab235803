"""Tests of demand system calibration and evaluation."""

from typing import Any, Dict

import numpy as np
import pytest

from pymerger import (
    AIDS, CES, Demand, Linear, LogLinear, Logit, MarketObservation, build_demand, build_diversions, build_ownership,
    exceptions, register_demand
)
from pymerger.utilities.basics import compute_finite_differences


def calibrate(demand: Demand, data: Dict[str, Any], margins: Any = None) -> Demand:
    """Calibrate a demand system to market data under pre-merger ownership and verify that there were no errors."""
    observation = MarketObservation(data['prices'], data['quantities'], data['margins'] if margins is None else margins)
    diversions = build_diversions(observation.shares)
    ownership = build_ownership(data['owner_pre'])
    stats, errors = demand.calibrate(observation, diversions, ownership)
    assert not errors
    assert stats.converged
    assert demand.calibrated
    return demand


@pytest.fixture
def calibrated_demand(three_firm_data: Dict[str, Any], demand_configuration: Any) -> Demand:
    """Calibrate each demand system to the three-firm data."""
    name, demand_options = demand_configuration
    return calibrate(build_demand(name, **demand_options), three_firm_data)


def test_jacobian(calibrated_demand: Demand, three_firm_data: Dict[str, Any]) -> None:
    """Test that analytic Jacobians are close to finite differences at observed and perturbed prices."""
    for prices in [three_firm_data['prices'], three_firm_data['prices'] * np.array([1.1, 0.95, 1.2])]:
        analytic = calibrated_demand.compute_jacobian(prices)
        numerical = compute_finite_differences(calibrated_demand.compute_quantities, prices)
        np.testing.assert_allclose(analytic, numerical, rtol=1e-5, atol=1e-3)


def test_excluded_products(calibrated_demand: Demand, three_firm_data: Dict[str, Any]) -> None:
    """Test that excluded products have zero quantities, do not enter the Jacobian, and have no markups, and that the
    Jacobian of the remaining products is close to finite differences.
    """
    prices = three_firm_data['prices']
    active = np.array([True, False, True])
    quantities = calibrated_demand.compute_quantities(prices, active)
    assert quantities[1] == 0
    assert (quantities[active] > 0).all()

    jacobian = calibrated_demand.compute_jacobian(prices, active)
    np.testing.assert_array_equal(jacobian[1], 0)
    np.testing.assert_array_equal(jacobian[:, 1], 0)
    numerical = compute_finite_differences(lambda p: calibrated_demand.compute_quantities(p, active), prices)
    block = np.ix_(active, active)
    np.testing.assert_allclose(jacobian[block], numerical[block], rtol=1e-5, atol=1e-3)

    markups = calibrated_demand.compute_markups(prices, build_ownership(three_firm_data['owner_pre']), active)
    assert np.isnan(markups[1])
    assert np.isfinite(markups[active]).all()


def test_costs_are_a_fixed_point(calibrated_demand: Demand, three_firm_data: Dict[str, Any]) -> None:
    """Test that first-order conditions hold at observed prices given costs recovered from them."""
    prices = three_firm_data['prices']
    ownership = build_ownership(three_firm_data['owner_pre'])
    costs = prices - calibrated_demand.compute_markups(prices, ownership)
    foc = calibrated_demand.compute_foc(prices, costs, ownership)
    np.testing.assert_allclose(foc, 0, rtol=0, atol=1e-8)


@pytest.mark.parametrize('demand', [
    pytest.param(Linear(), id="linear"),
    pytest.param(Linear(symmetry=False), id="asymmetric linear"),
    pytest.param(LogLinear(), id="log-linear"),
    pytest.param(AIDS(), id="AIDS")
])
def test_exact_calibration(demand: Demand, three_firm_data: Dict[str, Any]) -> None:
    """Test that demand systems with one own-price parameter for each product reproduce all observed margins."""
    calibrate(demand, three_firm_data)
    prices = three_firm_data['prices']
    markups = demand.compute_markups(prices, build_ownership(three_firm_data['owner_pre']))
    tol = 1e-4 if isinstance(demand, AIDS) else 1e-6
    np.testing.assert_allclose(markups / prices, three_firm_data['margins'], rtol=0, atol=tol)


@pytest.mark.parametrize('demand', [
    pytest.param(Linear(), id="linear"),
    pytest.param(LogLinear(), id="log-linear"),
    pytest.param(Logit(), id="logit"),
    pytest.param(Logit(market_size=5000, norm_index=2), id="logit with an outside good"),
    pytest.param(CES(), id="CES"),
    pytest.param(AIDS(), id="AIDS")
])
def test_partial_calibration(demand: Demand, three_firm_data: Dict[str, Any]) -> None:
    """Test that when only one margin is observed, it is reproduced by the single parameter that is calibrated."""
    margins = np.array([three_firm_data['margins'][0], np.nan, np.nan])
    calibrate(demand, three_firm_data, margins)
    prices = three_firm_data['prices']
    markups = demand.compute_markups(prices, build_ownership(three_firm_data['owner_pre']))
    np.testing.assert_allclose(markups[0] / prices[0], margins[0], rtol=0, atol=1e-4)


def test_symmetric_slopes(three_firm_data: Dict[str, Any]) -> None:
    """Test that symmetric linear demand has a symmetric slope matrix with negative own-price slopes, is homogeneous
    of degree zero in prices, passes through observed quantities, and reproduces observed margins.
    """
    demand = calibrate(Linear(), three_firm_data)
    prices = three_firm_data['prices']
    np.testing.assert_allclose(demand.slopes, demand.slopes.T, rtol=0, atol=1e-12)
    np.testing.assert_allclose(demand.slopes @ prices, 0, rtol=0, atol=1e-8)
    np.testing.assert_allclose(demand.compute_quantities(2 * prices), demand.compute_quantities(prices), rtol=1e-10)
    assert (np.diag(demand.slopes) < 0).all()
    assert (demand.slopes[~np.eye(3, dtype=bool)] > 0).all()
    np.testing.assert_allclose(demand.compute_quantities(prices), three_firm_data['quantities'])
    markups = demand.compute_markups(prices, build_ownership(three_firm_data['owner_pre']))
    np.testing.assert_allclose(markups / prices, three_firm_data['margins'], rtol=0, atol=1e-8)


@pytest.mark.parametrize('demand', [
    pytest.param(Linear(), id="linear"),
    pytest.param(Linear(symmetry=False), id="asymmetric linear"),
    pytest.param(LogLinear(), id="log-linear"),
    pytest.param(AIDS(), id="AIDS")
])
def test_multiproduct_partial_margins(demand: Demand, three_firm_data: Dict[str, Any]) -> None:
    """Test that when a two-product firm has both of its margins observed and a single-product firm has none, the
    observed margins are reproduced exactly and the unobserved margin is finite.
    """
    data = {**three_firm_data, 'owner_pre': np.array([1, 1, 2])}
    margins = np.array([0.435, 0.417, np.nan])
    calibrate(demand, data, margins)
    prices = data['prices']
    markups = demand.compute_markups(prices, build_ownership(data['owner_pre']))
    tol = 1e-4 if isinstance(demand, AIDS) else 1e-8
    np.testing.assert_allclose(markups[:2] / prices[:2], margins[:2], rtol=0, atol=tol)
    assert np.isfinite(markups[2]) and markups[2] > 0


def test_logit_elasticities(three_firm_data: Dict[str, Any]) -> None:
    """Test that logit elasticities have the textbook form, alpha p_k (1{j = k} - s_k)."""
    demand = calibrate(Logit(market_size=5000), three_firm_data)
    prices = three_firm_data['prices']
    shares = demand.compute_shares(prices)
    np.testing.assert_allclose(shares * 5000, three_firm_data['quantities'], rtol=1e-10)
    expected = demand.price_coefficient * prices[None] * (np.eye(3) - shares[None])
    np.testing.assert_allclose(demand.compute_elasticities(prices), expected, rtol=1e-10)


def test_ces_elasticities(three_firm_data: Dict[str, Any]) -> None:
    """Test that CES elasticities depend only on the elasticity of substitution and revenue shares."""
    demand = calibrate(CES(), three_firm_data)
    prices = three_firm_data['prices']
    shares = demand.compute_shares(prices)
    gamma = demand.substitution
    assert gamma > 1
    expected = (gamma - 1) * shares[None] - gamma * np.eye(3)
    np.testing.assert_allclose(demand.compute_elasticities(prices), expected, rtol=1e-10, atol=1e-12)


def test_aids_expenditure(three_firm_data: Dict[str, Any]) -> None:
    """Test that AIDS expenditure is fixed when the market elasticity is negative one and otherwise responds to a
    uniform price increase with the market elasticity.
    """
    prices = three_firm_data['prices']
    fixed = calibrate(AIDS(), three_firm_data)
    np.testing.assert_allclose(fixed.compute_expenditure(1.1 * prices), fixed.expenditure, rtol=1e-12)
    np.testing.assert_allclose(fixed.compute_shares(prices).sum(), 1, rtol=1e-12)
    elastic = calibrate(AIDS(market_elasticity=-2), three_firm_data)
    np.testing.assert_allclose(elastic.compute_expenditure(1.1 * prices), elastic.expenditure * 1.1**-1, rtol=1e-12)


@pytest.mark.parametrize('demand', [
    pytest.param(Linear(), id="linear"),
    pytest.param(LogLinear(), id="log-linear"),
    pytest.param(Logit(), id="logit"),
    pytest.param(Logit(market_size=5000), id="logit with an outside good"),
    pytest.param(CES(), id="CES"),
    pytest.param(AIDS(), id="AIDS")
])
def test_uncalibrated(demand: Demand) -> None:
    """Test that uncalibrated demand systems can be formatted but not evaluated."""
    assert str(demand) == f"Uncalibrated {demand.name} demand."
    with pytest.raises(RuntimeError):
        demand.compute_quantities(np.ones(3))
    with pytest.raises(RuntimeError):
        demand.compute_jacobian(np.ones(3))


def test_formatting(calibrated_demand: Demand) -> None:
    """Test that calibrated demand systems can be formatted."""
    assert calibrated_demand.name in str(calibrated_demand)


@pytest.mark.parametrize(['demand', 'margins', 'quantities'], [
    pytest.param(Logit(market_size=3000), None, None, id="market size too small"),
    pytest.param(CES(budget=5000), None, None, id="budget too small"),
    pytest.param(Logit(norm_index=3), None, None, id="normalized product out of range"),
    pytest.param(LogLinear(), None, [650, 0, 1801], id="zero quantity for log-linear demand"),
    pytest.param(CES(), None, [650, 0, 1801], id="zero quantity for CES demand")
])
def test_invalid_calibration(demand: Demand, margins: Any, quantities: Any, three_firm_data: Dict[str, Any]) -> None:
    """Test that data that is inconsistent with a demand system's configuration is rejected."""
    observation = MarketObservation(
        three_firm_data['prices'], three_firm_data['quantities'] if quantities is None else quantities,
        three_firm_data['margins'] if margins is None else margins
    )
    with pytest.raises(exceptions.InputValidationError):
        demand.calibrate(observation, build_diversions(observation.shares), build_ownership([1, 2, 3]))


@pytest.mark.parametrize(['demand_type', 'demand_options'], [
    pytest.param(Logit, {'market_size': -1}, id="negative market size"),
    pytest.param(Logit, {'norm_index': -1}, id="negative normalized product"),
    pytest.param(CES, {'budget': np.inf}, id="infinite budget"),
    pytest.param(AIDS, {'market_elasticity': np.nan}, id="missing market elasticity")
])
def test_invalid_configuration(demand_type: Any, demand_options: Dict[str, Any]) -> None:
    """Test that invalid demand configurations are rejected."""
    with pytest.raises(ValueError):
        demand_type(**demand_options)


def test_registry() -> None:
    """Test that demand systems can be built by name and that custom systems can be registered."""
    assert isinstance(build_demand('LogLinear'), LogLinear)
    assert build_demand('logit', market_size=10).market_size == 10
    with pytest.raises(ValueError):
        build_demand('probit')
    with pytest.raises(TypeError):
        register_demand('bad', dict)

    class FixedLogit(Logit):
        """Logit demand with a fixed market size."""

        def __init__(self) -> None:
            super().__init__(market_size=1e4)

    register_demand('fixed-logit', FixedLogit)
    assert isinstance(build_demand('fixed-logit'), FixedLogit)
