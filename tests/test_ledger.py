import asyncio
import math

import pytest

from cryptofolio_api.services.exceptions import (
    HoldingNotFound,
    InsufficientBalance,
    InvalidAmount,
    InvalidSymbol,
)
from cryptofolio_api.services.ledger import Ledger, normalize_symbol


async def _portfolio_id(store, owner_id="owner-1"):
    portfolio = await store.get_or_create_portfolio(owner_id)
    return portfolio.id


def _quantities(holdings):
    return {h.symbol: h.quantity for h in holdings}


def test_normalize_symbol():
    assert normalize_symbol(" btc ") == "BTC"
    with pytest.raises(InvalidSymbol):
        normalize_symbol("   ")


def test_add_creates_then_increments(run_with_store):
    async def scenario(store):
        ledger = Ledger(store)
        pid = await _portfolio_id(store)
        created = await ledger.add_holding(pid, "btc", 1.5)
        increased = await ledger.add_holding(pid, "BTC", 0.25)
        return created, increased, await store.list_holdings(pid)

    created, increased, holdings = run_with_store(scenario)
    assert created.symbol == "BTC"
    assert created.quantity == 1.5
    assert increased.quantity == 1.75
    assert _quantities(holdings) == {"BTC": 1.75}


@pytest.mark.parametrize("amount", [0, -1, math.inf, math.nan, "1", True])
def test_add_rejects_invalid_amounts(run_with_store, amount):
    async def scenario(store):
        ledger = Ledger(store)
        pid = await _portfolio_id(store)
        with pytest.raises(InvalidAmount):
            await ledger.add_holding(pid, "BTC", amount)
        return await store.list_holdings(pid)

    assert run_with_store(scenario) == []


def test_add_rejects_overflowing_sum_and_keeps_quantity(run_with_store):
    async def scenario(store):
        ledger = Ledger(store)
        pid = await _portfolio_id(store)
        await ledger.add_holding(pid, "BTC", 1e308)
        with pytest.raises(InvalidAmount):
            await ledger.add_holding(pid, "BTC", 1e308)
        return await store.list_holdings(pid)

    holdings = run_with_store(scenario)
    assert _quantities(holdings) == {"BTC": 1e308}
    assert all(math.isfinite(h.quantity) for h in holdings)


def test_remove_partial_and_to_zero(run_with_store):
    async def scenario(store):
        ledger = Ledger(store)
        pid = await _portfolio_id(store)
        await ledger.add_holding(pid, "ETH", 3)
        partial = await ledger.remove_holding(pid, "eth", 1)
        emptied = await ledger.remove_holding(pid, "ETH", 2)
        return partial, emptied, await store.list_holdings(pid)

    partial, emptied, holdings = run_with_store(scenario)
    assert partial.quantity == 2
    assert emptied is None
    assert holdings == []


def test_remove_more_than_balance_fails_and_keeps_quantity(run_with_store):
    async def scenario(store):
        ledger = Ledger(store)
        pid = await _portfolio_id(store)
        await ledger.add_holding(pid, "ETH", 1)
        with pytest.raises(InsufficientBalance) as excinfo:
            await ledger.remove_holding(pid, "ETH", 1.01)
        return excinfo.value, await store.list_holdings(pid)

    error, holdings = run_with_store(scenario)
    assert not isinstance(error, HoldingNotFound)
    assert _quantities(holdings) == {"ETH": 1}


def test_remove_absent_symbol_fails_with_not_found(run_with_store):
    async def scenario(store):
        ledger = Ledger(store)
        pid = await _portfolio_id(store)
        await ledger.remove_holding(pid, "DOGE", 1)

    with pytest.raises(HoldingNotFound):
        run_with_store(scenario)


def test_remove_rejects_non_positive_delta(run_with_store):
    async def scenario(store):
        ledger = Ledger(store)
        pid = await _portfolio_id(store)
        await ledger.add_holding(pid, "BTC", 1)
        with pytest.raises(InvalidAmount):
            await ledger.remove_holding(pid, "BTC", 0)
        return await store.list_holdings(pid)

    assert _quantities(run_with_store(scenario)) == {"BTC": 1}


def test_update_overwrites_and_creates(run_with_store):
    async def scenario(store):
        ledger = Ledger(store)
        pid = await _portfolio_id(store)
        await ledger.add_holding(pid, "BTC", 5)
        await ledger.update_holding(pid, "btc", 2)
        await ledger.update_holding(pid, "SOL", 10)
        return await store.list_holdings(pid)

    assert _quantities(run_with_store(scenario)) == {"BTC": 2, "SOL": 10}


def test_update_to_zero_deletes_and_is_idempotent(run_with_store):
    async def scenario(store):
        ledger = Ledger(store)
        pid = await _portfolio_id(store)
        await ledger.add_holding(pid, "BTC", 5)
        first = await ledger.update_holding(pid, "BTC", 0)
        second = await ledger.update_holding(pid, "BTC", 0)
        return first, second, await store.list_holdings(pid)

    first, second, holdings = run_with_store(scenario)
    assert first is None and second is None
    assert holdings == []


def test_update_rejects_negative(run_with_store):
    async def scenario(store):
        ledger = Ledger(store)
        pid = await _portfolio_id(store)
        await ledger.update_holding(pid, "BTC", -1)

    with pytest.raises(InvalidAmount):
        run_with_store(scenario)


def test_delete_holding(run_with_store):
    async def scenario(store):
        ledger = Ledger(store)
        pid = await _portfolio_id(store)
        await ledger.add_holding(pid, "BTC", 1)
        return await ledger.delete_holding(pid, "btc"), await ledger.delete_holding(pid, "BTC")

    assert run_with_store(scenario) == (True, False)


def test_concurrent_adds_do_not_lose_updates(run_with_store):
    async def scenario(store):
        ledger = Ledger(store)
        pid = await _portfolio_id(store)
        await asyncio.gather(*[ledger.add_holding(pid, "BTC", 0.5) for _ in range(10)])
        return await store.list_holdings(pid)

    assert _quantities(run_with_store(scenario)) == {"BTC": 5.0}


def test_concurrent_full_removals_cannot_both_succeed(run_with_store):
    async def scenario(store):
        ledger = Ledger(store)
        pid = await _portfolio_id(store)
        await ledger.add_holding(pid, "ETH", 2)
        outcomes = await asyncio.gather(
            ledger.remove_holding(pid, "ETH", 2),
            ledger.remove_holding(pid, "ETH", 2),
            return_exceptions=True,
        )
        return outcomes, await store.list_holdings(pid)

    outcomes, holdings = run_with_store(scenario)
    failures = [o for o in outcomes if isinstance(o, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], InsufficientBalance)
    assert holdings == []


def test_holdings_are_isolated_per_portfolio(run_with_store):
    async def scenario(store):
        ledger = Ledger(store)
        first = await _portfolio_id(store, "owner-a")
        second = await _portfolio_id(store, "owner-b")
        await asyncio.gather(
            ledger.add_holding(first, "BTC", 1),
            ledger.add_holding(second, "BTC", 3),
        )
        return await store.list_holdings(first), await store.list_holdings(second)

    first, second = run_with_store(scenario)
    assert _quantities(first) == {"BTC": 1}
    assert _quantities(second) == {"BTC": 3}
