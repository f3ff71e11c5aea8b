"""Tests for colorpage.core.ledger — Redis-backed credit balances.

Tests cover:
- Profile creation (signup credits, idempotency).
- Adding and deducting credits, including the insufficient-balance path.
- Concurrent deductions never overdraw the balance or expose a negative one.
- Deductions retry when another write lands between the check and the decrement.
- Processed-event claims for webhook idempotency.
- Redis failures surfacing as LedgerError.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from colorpage.core.exceptions import (
    InsufficientCreditsError,
    LedgerError,
    NotFoundError,
    ValidationError,
)
from colorpage.core.ledger import PROCESSED_EVENTS_KEY, CreditLedger


class TestCreateProfile:
    async def test_signup_grants_starting_credits(self, ledger):
        profile = await ledger.create_profile("user-1", "a@example.com", "Ada")
        assert profile == {
            "user_id": "user-1",
            "email": "a@example.com",
            "full_name": "Ada",
            "credits": 3,
            "subscription_tier": "free",
        }

    async def test_create_is_idempotent(self, ledger):
        await ledger.create_profile("user-1", "a@example.com")
        await ledger.add_credits("user-1", 5)
        profile = await ledger.create_profile("user-1", "other@example.com")
        assert profile["credits"] == 8
        assert profile["email"] == "a@example.com"

    async def test_custom_signup_credits(self, fake_redis):
        ledger = CreditLedger(fake_redis, signup_credits=0)
        profile = await ledger.create_profile("user-1", "a@example.com")
        assert profile["credits"] == 0

    async def test_missing_user_id(self, ledger):
        with pytest.raises(ValidationError):
            await ledger.create_profile("", "a@example.com")


class TestReadCredits:
    async def test_unknown_user(self, ledger):
        with pytest.raises(NotFoundError, match="User not found"):
            await ledger.get_credits("ghost")

    async def test_has_credits(self, ledger):
        await ledger.create_profile("user-1", "a@example.com")
        assert await ledger.has_credits("user-1", 3) is True
        assert await ledger.has_credits("user-1", 4) is False


class TestAdjustCredits:
    async def test_add_returns_new_balance(self, ledger):
        await ledger.create_profile("user-1", "a@example.com")
        assert await ledger.add_credits("user-1", 10) == 13
        assert await ledger.get_credits("user-1") == 13

    async def test_deduct_returns_new_balance(self, ledger):
        await ledger.create_profile("user-1", "a@example.com")
        assert await ledger.deduct_credits("user-1", 1) == 2

    async def test_deduct_below_zero_leaves_balance_unchanged(self, ledger):
        await ledger.create_profile("user-1", "a@example.com")
        with pytest.raises(InsufficientCreditsError) as exc_info:
            await ledger.deduct_credits("user-1", 5)
        assert exc_info.value.status_code == 402
        assert exc_info.value.required == 5
        assert exc_info.value.available == 3
        assert await ledger.get_credits("user-1") == 3

    async def test_adjust_unknown_user(self, ledger, fake_redis):
        with pytest.raises(NotFoundError):
            await ledger.add_credits("ghost", 1)
        assert await fake_redis.exists("profile:ghost") == 0

    @pytest.mark.parametrize("delta", [0, -1, 1.5, True])
    async def test_invalid_delta(self, ledger, delta):
        await ledger.create_profile("user-1", "a@example.com")
        with pytest.raises(ValidationError):
            await ledger.deduct_credits("user-1", delta)

    async def test_concurrent_deductions_never_overdraw(self, ledger):
        await ledger.create_profile("user-1", "a@example.com")
        results = await asyncio.gather(
            *(ledger.deduct_credits("user-1", 1) for _ in range(5)),
            return_exceptions=True,
        )
        failures = [r for r in results if isinstance(r, InsufficientCreditsError)]
        assert len(failures) == 2
        assert await ledger.get_credits("user-1") == 0

    async def test_concurrent_readers_never_see_negative_balance(self, ledger):
        await ledger.create_profile("user-1", "a@example.com")
        deductions = [ledger.deduct_credits("user-1", 1) for _ in range(6)]
        reads = [ledger.get_credits("user-1") for _ in range(6)]
        results = await asyncio.gather(*deductions, *reads, return_exceptions=True)
        balances = results[6:]
        assert all(isinstance(balance, int) and balance >= 0 for balance in balances)
        assert await ledger.get_credits("user-1") == 0

    async def test_deduct_retries_after_concurrent_write(self, ledger, fake_redis):
        await ledger.create_profile("user-1", "a@example.com")
        original_pipeline = fake_redis.pipeline

        def pipeline_with_interleaved_write(*args, **kwargs):
            pipe = original_pipeline(*args, **kwargs)
            watched_hget = pipe.hget
            calls = {"n": 0}

            async def hget(*hget_args):
                value = await watched_hget(*hget_args)
                calls["n"] += 1
                if calls["n"] == 1:
                    await fake_redis.hincrby("profile:user-1", "credits", -2)
                return value

            pipe.hget = hget
            return pipe

        with patch.object(fake_redis, "pipeline", side_effect=pipeline_with_interleaved_write):
            with pytest.raises(InsufficientCreditsError) as exc_info:
                await ledger.deduct_credits("user-1", 3)
        assert exc_info.value.available == 1
        assert await ledger.get_credits("user-1") == 1

    async def test_deduct_unknown_user(self, ledger, fake_redis):
        with pytest.raises(NotFoundError):
            await ledger.deduct_credits("ghost", 1)
        assert await fake_redis.exists("profile:ghost") == 0


class TestProcessedEvents:
    async def test_claim_once(self, ledger, fake_redis):
        assert await ledger.claim_event("evt_1") is True
        assert await ledger.claim_event("evt_1") is False
        assert await fake_redis.sismember(PROCESSED_EVENTS_KEY, "evt_1")

    async def test_release_allows_reclaim(self, ledger):
        await ledger.claim_event("evt_1")
        await ledger.release_event("evt_1")
        assert await ledger.claim_event("evt_1") is True


class TestRedisFailures:
    @pytest.fixture
    def broken_ledger(self):
        redis = MagicMock()
        error = RedisConnectionError("connection refused")
        for name in ("hgetall", "hsetnx", "hincrby", "exists", "sadd", "srem"):
            setattr(redis, name, AsyncMock(side_effect=error))
        return CreditLedger(redis)

    async def test_read_failure(self, broken_ledger):
        with pytest.raises(LedgerError) as exc_info:
            await broken_ledger.get_profile("user-1")
        assert exc_info.value.status_code == 500

    async def test_create_failure(self, broken_ledger):
        with pytest.raises(LedgerError):
            await broken_ledger.create_profile("user-1", "a@example.com")

    async def test_claim_failure(self, broken_ledger):
        with pytest.raises(LedgerError):
            await broken_ledger.claim_event("evt_1")

    async def test_release_failure_is_logged_only(self, broken_ledger):
        await broken_ledger.release_event("evt_1")
