"""
Credit balances and the credit gate for AI fixes.

Balances are owned by a ``CreditStore`` keyed by the identity subject. The
credit claim in a session token only seeds the store the first time a
subject is seen, so reissuing a token never resets a balance. Debits are
a single atomic decrement-if-sufficient per subject.
"""

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, Set, Tuple

import redis.asyncio as redis

from shared.errors import ValidationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..auth.tokens import Identity
from ..domain.plans import credit_package_options


class CreditStore(Protocol):
    async def seed(self, subject: str, balance: int) -> None:
        """Set the balance unless the subject already has one."""

    async def get_balance(self, subject: str) -> Optional[int]:
        ...

    async def try_debit(self, subject: str, cost: int) -> Tuple[bool, int]:
        """Subtract cost if the balance covers it; return (debited, balance)."""

    async def add(self, subject: str, credits: int) -> int:
        ...

    async def add_once(self, subject: str, credits: int, reference: str) -> Optional[int]:
        """Add credits unless reference was already applied; None when it was."""


class InMemoryCreditStore:
    """Process-local balances guarded by a lock."""

    def __init__(self):
        self._balances: Dict[str, int] = {}
        self._applied: Set[str] = set()
        self._lock = threading.Lock()

    async def seed(self, subject: str, balance: int) -> None:
        with self._lock:
            self._balances.setdefault(subject, max(0, balance))

    async def get_balance(self, subject: str) -> Optional[int]:
        with self._lock:
            return self._balances.get(subject)

    async def try_debit(self, subject: str, cost: int) -> Tuple[bool, int]:
        with self._lock:
            balance = self._balances.get(subject, 0)
            if balance < cost:
                return False, balance
            balance -= cost
            self._balances[subject] = balance
            return True, balance

    async def add(self, subject: str, credits: int) -> int:
        with self._lock:
            balance = self._balances.get(subject, 0) + credits
            self._balances[subject] = balance
            return balance

    async def add_once(self, subject: str, credits: int, reference: str) -> Optional[int]:
        with self._lock:
            if reference in self._applied:
                return None
            balance = self._balances.get(subject, 0) + credits
            self._balances[subject] = balance
            self._applied.add(reference)
            return balance


# KEYS[1] = balance key, ARGV[1] = cost. Returns {debited, balance}.
_DEBIT_IF_SUFFICIENT = """
local balance = tonumber(redis.call('GET', KEYS[1]) or '0')
local cost = tonumber(ARGV[1])
if balance < cost then
    return {0, balance}
end
return {1, redis.call('DECRBY', KEYS[1], cost)}
"""

# KEYS[1] = balance key, KEYS[2] = applied marker, ARGV[1] = credits,
# ARGV[2] = marker ttl. Returns the new balance, or false if already applied.
_CREDIT_ONCE = """
if not redis.call('SET', KEYS[2], 1, 'NX', 'EX', tonumber(ARGV[2])) then
    return false
end
return redis.call('INCRBY', KEYS[1], tonumber(ARGV[1]))
"""

# Provider retries of a confirmation arrive within days.
APPLIED_MARKER_TTL_SECONDS = 30 * 24 * 60 * 60


class RedisCreditStore:
    """Balances in Redis; debits run as a Lua script so check and decrement are atomic."""

    def __init__(self, redis_url: str, key_prefix: str = "credits"):
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self._redis: Optional[redis.Redis] = None
        self._debit_script = None
        self._credit_once_script = None

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url)
            self._debit_script = self._redis.register_script(_DEBIT_IF_SUFFICIENT)
            self._credit_once_script = self._redis.register_script(_CREDIT_ONCE)
        return self._redis

    def _make_key(self, subject: str) -> str:
        return f"{self.key_prefix}:{subject}"

    async def seed(self, subject: str, balance: int) -> None:
        redis_client = await self._get_redis()
        await redis_client.set(self._make_key(subject), max(0, balance), nx=True)

    async def get_balance(self, subject: str) -> Optional[int]:
        redis_client = await self._get_redis()
        value = await redis_client.get(self._make_key(subject))
        if value is None:
            return None
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return int(value)

    async def try_debit(self, subject: str, cost: int) -> Tuple[bool, int]:
        await self._get_redis()
        debited, balance = await self._debit_script(keys=[self._make_key(subject)], args=[cost])
        return bool(int(debited)), int(balance)

    async def add(self, subject: str, credits: int) -> int:
        redis_client = await self._get_redis()
        return int(await redis_client.incrby(self._make_key(subject), credits))

    async def add_once(self, subject: str, credits: int, reference: str) -> Optional[int]:
        await self._get_redis()
        marker = f"{self.key_prefix}-applied:{reference}"
        balance = await self._credit_once_script(
            keys=[self._make_key(subject), marker], args=[credits, APPLIED_MARKER_TTL_SECONDS]
        )
        return None if balance is None else int(balance)

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


@dataclass(frozen=True)
class CreditDecision:
    """Outcome of a credit charge."""

    allowed: bool
    required: int
    balance: int
    upgrade_options: Dict[str, Dict[str, int]] = field(default_factory=dict)
    purchase_url: str = "/credits"

    @property
    def remaining(self) -> int:
        return self.balance


class CreditGate:
    """Charges AI fix credits against the caller's balance."""

    def __init__(self, store: CreditStore, metrics: Optional[MetricsCollector] = None):
        self.store = store
        self.metrics = metrics
        self.logger = get_logger("gateway.credits")

    async def balance_for(self, identity: Identity) -> int:
        """Current balance, seeding the store from the token claim on first sight."""
        await self.store.seed(identity.subject, identity.credits)
        balance = await self.store.get_balance(identity.subject)
        return balance if balance is not None else identity.credits

    async def charge(self, identity: Identity, cost: Any = 1) -> CreditDecision:
        """Deduct cost from the caller's balance if it is sufficient."""
        if isinstance(cost, bool) or not isinstance(cost, int) or cost < 1:
            raise ValidationError("Credit cost must be a positive integer", details={"cost": cost})

        await self.store.seed(identity.subject, identity.credits)
        debited, balance = await self.store.try_debit(identity.subject, cost)

        if self.metrics is not None:
            self.metrics.increment_counter("credit_charges_total", decision="allowed" if debited else "denied")

        if not debited:
            self.logger.info(
                "Insufficient credits",
                user_id=identity.subject,
                required=cost,
                remaining=balance,
            )
            return CreditDecision(
                allowed=False,
                required=cost,
                balance=balance,
                upgrade_options=credit_package_options(),
            )

        self.logger.info("Credits charged", user_id=identity.subject, cost=cost, balance=balance)
        return CreditDecision(allowed=True, required=cost, balance=balance)

    async def grant(self, subject: str, credits: int) -> int:
        """Add purchased credits to a subject's balance."""
        if credits < 1:
            raise ValidationError("Granted credits must be positive", details={"credits": credits})
        balance = await self.store.add(subject, credits)
        self.logger.info("Credits granted", user_id=subject, credits=credits, balance=balance)
        return balance

    async def grant_once(self, subject: str, credits: int, reference: str) -> Optional[int]:
        """Add credits for a payment reference at most once; None if already applied."""
        if credits < 1:
            raise ValidationError("Granted credits must be positive", details={"credits": credits})
        balance = await self.store.add_once(subject, credits, reference)
        if balance is None:
            self.logger.info("Credits already applied", user_id=subject, reference=reference)
            return None
        self.logger.info("Credits granted", user_id=subject, credits=credits, balance=balance, reference=reference)
        return balance
