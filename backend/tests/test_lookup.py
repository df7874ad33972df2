from __future__ import annotations
import pytest

from app.services.lookup import Found, NotFound, ReadError, read_first


def _returning(outcome, calls, name):
    async def strategy():
        calls.append(name)
        return outcome
    return strategy


@pytest.mark.asyncio
async def test_first_found_wins():
    calls = []
    value = await read_first([
        ("view", _returning(Found("from view"), calls, "view")),
        ("tables", _returning(Found("from tables"), calls, "tables")),
    ])
    assert value == "from view"
    assert calls == ["view"]


@pytest.mark.asyncio
async def test_not_found_falls_through():
    calls = []
    value = await read_first([
        ("view", _returning(NotFound(), calls, "view")),
        ("tables", _returning(Found(42), calls, "tables")),
    ])
    assert value == 42
    assert calls == ["view", "tables"]


@pytest.mark.asyncio
async def test_nothing_found_returns_none():
    assert await read_first([("view", _returning(NotFound(), [], "view"))]) is None


@pytest.mark.asyncio
async def test_read_error_is_raised_not_skipped():
    calls = []
    with pytest.raises(RuntimeError, match="connection reset"):
        await read_first([
            ("view", _returning(ReadError(RuntimeError("connection reset")), calls, "view")),
            ("tables", _returning(Found("stale"), calls, "tables")),
        ])
    assert calls == ["view"]
