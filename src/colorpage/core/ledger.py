"""Credit ledger backed by Redis.

Each user profile is a Redis hash at ``profile:{user_id}`` with the fields
``email``, ``full_name``, ``credits``, ``subscription_tier`` and
``created_at``.  Credit adjustments use ``HINCRBY`` so concurrent requests
for the same user can never overwrite each other's updates.

Deductions check and decrement the balance in one optimistic transaction
(``WATCH`` then ``MULTI``/``EXEC``, retried when another write intervenes),
so no request ever observes a negative balance.  A deduction larger than the
balance is reported as :class:`InsufficientCreditsError`.

Processed payment events are tracked in the set ``stripe:processed_events``.
:meth:`CreditLedger.claim_event` returns ``False`` for an event id already in
the set, which makes webhook crediting apply at most once per event.
"""

from __future__ import annotations

import logging
import time

from redis.asyncio import Redis
from redis.exceptions import RedisError, WatchError

from colorpage.core.exceptions import (
    InsufficientCreditsError,
    LedgerError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

PROCESSED_EVENTS_KEY = "stripe:processed_events"
DEFAULT_TIER = "free"


def _profile_key(user_id: str) -> str:
    return f"profile:{user_id}"


class CreditLedger:
    """Read and adjust user credit balances.

    Args:
        redis: Async Redis client created with ``decode_responses=True``.
        signup_credits: Balance granted by :meth:`create_profile`.
    """

    def __init__(self, redis: Redis, signup_credits: int = 3):
        self.redis = redis
        self.signup_credits = signup_credits

    async def create_profile(self, user_id: str, email: str, full_name: str = "") -> dict:
        """Create the profile document for a new user.

        Calling this again for an existing user leaves the profile (and its
        balance) untouched and returns it.
        """
        if not user_id:
            raise ValidationError("User ID is required")
        key = _profile_key(user_id)
        try:
            created = await self.redis.hsetnx(key, "credits", self.signup_credits)
            if created:
                await self.redis.hset(
                    key,
                    mapping={
                        "email": email,
                        "full_name": full_name,
                        "subscription_tier": DEFAULT_TIER,
                        "created_at": int(time.time()),
                    },
                )
                logger.info(f"Created profile {user_id} with {self.signup_credits} credits")
        except RedisError as e:
            logger.error(f"Failed to create profile {user_id}: {e}")
            raise LedgerError("Unable to create profile") from e
        return await self.get_profile(user_id)

    async def get_profile(self, user_id: str) -> dict:
        """Return the profile document as a dict with an integer ``credits``.

        Raises:
            NotFoundError: If no profile exists for ``user_id``.
        """
        try:
            raw = await self.redis.hgetall(_profile_key(user_id))
        except RedisError as e:
            logger.error(f"Failed to read profile {user_id}: {e}")
            raise LedgerError("Unable to verify your credits") from e
        if not raw:
            raise NotFoundError("User not found")
        return {
            "user_id": user_id,
            "email": raw.get("email", ""),
            "full_name": raw.get("full_name", ""),
            "credits": int(raw.get("credits", 0)),
            "subscription_tier": raw.get("subscription_tier", DEFAULT_TIER),
        }

    async def get_credits(self, user_id: str) -> int:
        profile = await self.get_profile(user_id)
        return profile["credits"]

    async def has_credits(self, user_id: str, required: int) -> bool:
        return await self.get_credits(user_id) >= required

    async def add_credits(self, user_id: str, delta: int) -> int:
        """Atomically add ``delta`` credits and return the new balance."""
        _check_delta(delta)
        await self._ensure_exists(user_id)
        try:
            balance = await self.redis.hincrby(_profile_key(user_id), "credits", delta)
        except RedisError as e:
            logger.error(f"Failed to add {delta} credits to {user_id}: {e}")
            raise LedgerError("Unable to add credits") from e
        logger.info(f"Added {delta} credits to {user_id}. New total: {balance}")
        return balance

    async def deduct_credits(self, user_id: str, delta: int) -> int:
        """Atomically remove ``delta`` credits and return the new balance.

        The balance is read under ``WATCH`` and decremented in a ``MULTI``
        block; a concurrent write to the profile aborts the transaction and
        the check is repeated.

        Raises:
            InsufficientCreditsError: If the balance is lower than ``delta``.
                The balance is left unchanged.
        """
        _check_delta(delta)
        key = _profile_key(user_id)
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                while True:
                    try:
                        await pipe.watch(key)
                        raw = await pipe.hget(key, "credits")
                        if raw is None:
                            raise NotFoundError("User not found")
                        available = int(raw)
                        if available < delta:
                            raise InsufficientCreditsError(required=delta, available=available)
                        pipe.multi()
                        pipe.hincrby(key, "credits", -delta)
                        (balance,) = await pipe.execute()
                        break
                    except WatchError:
                        logger.debug(f"Balance of {user_id} changed during deduction, retrying")
        except RedisError as e:
            logger.error(f"Failed to deduct {delta} credits from {user_id}: {e}")
            raise LedgerError("Unable to deduct credits") from e
        logger.info(f"Deducted {delta} credit(s) from {user_id} ({available} -> {balance})")
        return balance

    async def claim_event(self, event_id: str) -> bool:
        """Record a payment event id.  Returns False if it was already recorded."""
        try:
            added = await self.redis.sadd(PROCESSED_EVENTS_KEY, event_id)
        except RedisError as e:
            logger.error(f"Failed to record event {event_id}: {e}")
            raise LedgerError("Payment processing failed") from e
        return added == 1

    async def release_event(self, event_id: str) -> None:
        """Forget a claimed event so a retried delivery can be processed."""
        try:
            await self.redis.srem(PROCESSED_EVENTS_KEY, event_id)
        except RedisError as e:
            logger.error(f"Failed to release event {event_id}: {e}")

    async def _ensure_exists(self, user_id: str) -> None:
        try:
            exists = await self.redis.exists(_profile_key(user_id))
        except RedisError as e:
            logger.error(f"Failed to look up profile {user_id}: {e}")
            raise LedgerError("Unable to verify your credits") from e
        if not exists:
            raise NotFoundError("User not found")


def _check_delta(delta: int) -> None:
    if not isinstance(delta, int) or isinstance(delta, bool) or delta <= 0:
        raise ValidationError("Credit amount must be a positive integer")
