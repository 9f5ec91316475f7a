"""Tests for the sequence generator."""

import asyncio

import pytest

from placement.sequences import INVOICE_NUMBER, ORDER_NUMBER, SequenceGenerator

pytestmark = pytest.mark.anyio


class TestGetNext:
    async def test_first_value_is_one(self, session_factory):
        sequences = SequenceGenerator(session_factory)
        assert await sequences.get_next("t1", ORDER_NUMBER) == 1

    async def test_values_strictly_increase(self, session_factory):
        sequences = SequenceGenerator(session_factory)
        values = [await sequences.get_next("t1", ORDER_NUMBER) for _ in range(5)]
        assert values == [1, 2, 3, 4, 5]

    async def test_names_are_independent(self, session_factory):
        sequences = SequenceGenerator(session_factory)
        await sequences.get_next("t1", ORDER_NUMBER)
        await sequences.get_next("t1", ORDER_NUMBER)
        assert await sequences.get_next("t1", INVOICE_NUMBER) == 1

    async def test_tenants_are_independent(self, session_factory):
        sequences = SequenceGenerator(session_factory)
        await sequences.get_next("t1", ORDER_NUMBER)
        await sequences.get_next("t1", ORDER_NUMBER)
        assert await sequences.get_next("t2", ORDER_NUMBER) == 1

    async def test_concurrent_calls_never_share_a_value(self, session_factory):
        sequences = SequenceGenerator(session_factory)
        values = await asyncio.gather(
            *(sequences.get_next("t1", ORDER_NUMBER) for _ in range(5))
        )
        assert sorted(values) == [1, 2, 3, 4, 5]
