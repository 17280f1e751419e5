"""IP reputation tracking.

Keeps a persistent, decaying risk record per network address:
- Failed and successful registrations
- Spam accounts created
- Rate limit hits
- Datacenter and Tor exit classification

Records live in the key-value store under spam:ip:{ip} and expire 30 days
after the last activity. Counters use the store's atomic increment so
parallel attempts from one address are not lost; the score is derived from
the counters and can only grow until the record expires.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from pydantic import BaseModel, Field, ValidationError

from spam_guard.reference_data import ReferenceData, get_reference_data
from spam_guard.store import KeyValueStore, StoreError, bounded

logger = logging.getLogger("spam-guard.ip-reputation")

IP_REPUTATION_PREFIX = "spam:ip:"
IP_COUNTER_PREFIX = "spam:ip-counter:"
IP_REPUTATION_TTL_SECONDS = 30 * 24 * 60 * 60  # 30 days

# Score contributions
SCORE_FAILED_REGISTRATION = 10
SCORE_EXTRA_REGISTRATION = 5
SCORE_SPAM_ACCOUNT = 30
SCORE_RATE_LIMIT_HIT = 5
SCORE_DATACENTER = 15
SCORE_TOR_EXIT = 25

FREE_REGISTRATIONS = 5
RATE_LIMIT_ABUSE_COUNT = 10

# Block thresholds
THRESHOLD_AUTO_BLOCK = 80
THRESHOLD_SHOULD_BLOCK = 70
MAX_SPAM_ACCOUNTS = 2
MAX_REGISTRATIONS = 10

FLAG_DATACENTER = "datacenter_ip"
FLAG_TOR_EXIT = "tor_exit"
FLAG_SPAM_CREATOR = "spam_creator"
FLAG_MULTIPLE_ACCOUNTS = "multiple_accounts"
FLAG_RATE_LIMIT_ABUSER = "rate_limit_abuser"
FLAG_ADMIN_BLOCKED = "admin_blocked"

COUNTERS = (
    "failed_registrations",
    "successful_registrations",
    "spam_accounts_created",
    "rate_limit_hits",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IPReputation(BaseModel):
    """Persisted reputation record for one address."""

    ip: str
    score: int = 0
    failed_registrations: int = 0
    successful_registrations: int = 0
    spam_accounts_created: int = 0
    rate_limit_hits: int = 0
    flags: list[str] = Field(default_factory=list)
    first_seen: datetime = Field(default_factory=_utcnow)
    last_activity: datetime = Field(default_factory=_utcnow)
    is_blocked: bool = False

    def add_flag(self, flag: str) -> bool:
        """Add a flag once. Returns True if it was new."""
        if flag in self.flags:
            return False
        self.flags.append(flag)
        return True

    def computed_score(self) -> int:
        """Score implied by the counters and static flags, capped at 100."""
        score = (
            self.failed_registrations * SCORE_FAILED_REGISTRATION
            + max(0, self.successful_registrations - FREE_REGISTRATIONS)
            * SCORE_EXTRA_REGISTRATION
            + self.spam_accounts_created * SCORE_SPAM_ACCOUNT
            + self.rate_limit_hits * SCORE_RATE_LIMIT_HIT
        )
        if FLAG_DATACENTER in self.flags:
            score += SCORE_DATACENTER
        if FLAG_TOR_EXIT in self.flags:
            score += SCORE_TOR_EXIT
        return min(100, score)


@dataclass
class ReputationEvent:
    """One observed outcome for an address. Several fields may be set at once."""

    failed_registration: bool = False
    successful_registration: bool = False
    spam_account_created: bool = False
    rate_limit_hit: bool = False
    flag: str | None = None


@dataclass
class BlockDecision:
    """Whether an address should be refused, with an audit reason."""

    blocked: bool
    reason: str | None = None
    reputation: IPReputation | None = None


def is_datacenter_ip(ip: str, reference: ReferenceData | None = None) -> bool:
    """Check if an address falls in a known cloud/datacenter range."""
    reference = reference or get_reference_data()
    return any(ip.startswith(prefix) for prefix in reference.datacenter_ip_prefixes)


def is_tor_exit_node(ip: str, reference: ReferenceData | None = None) -> bool:
    """Check if an address falls in a known Tor exit range."""
    reference = reference or get_reference_data()
    return any(ip.startswith(prefix) for prefix in reference.tor_exit_prefixes)


class IPReputationTracker:
    """Reads and updates reputation records. Fails open on store errors."""

    def __init__(
        self,
        store: KeyValueStore,
        reference: ReferenceData | None = None,
        timeout_seconds: float = 0.25,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.reference = reference or get_reference_data()
        self.timeout = timeout_seconds
        self._clock = clock

    @staticmethod
    def _record_key(ip: str) -> str:
        return f"{IP_REPUTATION_PREFIX}{ip}"

    @staticmethod
    def _counter_key(ip: str, counter: str) -> str:
        return f"{IP_COUNTER_PREFIX}{counter}:{ip}"

    async def _load(self, ip: str) -> IPReputation | None:
        """Load a record, raising StoreError when the store cannot answer."""
        data = await bounded(self.store.get(self._record_key(ip)), self.timeout)
        if not data:
            return None

        try:
            return IPReputation.model_validate_json(data)
        except ValidationError as e:
            logger.warning(f"Discarding unreadable reputation record for {ip}: {e}")
            return None

    async def get_reputation(self, ip: str) -> IPReputation | None:
        """Load the record for an address, or None if unknown or unavailable."""
        try:
            return await self._load(ip)
        except StoreError as e:
            logger.warning(f"Reputation lookup failed for {ip}, failing open: {e}")
            return None

    async def _increment(self, ip: str, counter: str, previous: int) -> int:
        try:
            value = await bounded(
                self.store.incr(self._counter_key(ip, counter), IP_REPUTATION_TTL_SECONDS),
                self.timeout,
            )
        except StoreError as e:
            logger.warning(f"Atomic {counter} increment failed for {ip}: {e}")
            return previous + 1
        # The counter key can expire independently of the record
        return max(value, previous + 1)

    async def update_reputation(self, ip: str, event: ReputationEvent) -> IPReputation:
        """Apply an event to an address and persist the result.

        When the existing record cannot be read, the event is applied to a
        fresh record that is returned but not saved, so a stored block is
        never overwritten. The atomic counters are still incremented.

        Returns:
            The updated record, even if it could not be saved.
        """
        reputation, _ = await self._apply(ip, event)
        return reputation

    async def _apply(
        self, ip: str, event: ReputationEvent, force_block: bool = False
    ) -> tuple[IPReputation, bool]:
        """Apply an event. Returns the record and whether it was saved."""
        now = self._clock()
        try:
            existing = await self._load(ip)
        except StoreError as e:
            logger.warning(f"Reputation lookup failed for {ip}, update not saved: {e}")
            existing = None
            loaded = False
        else:
            loaded = True

        reputation = existing or IPReputation(ip=ip, first_seen=now, last_activity=now)
        previous_score = reputation.score

        if event.failed_registration:
            reputation.failed_registrations = await self._increment(
                ip, "failed_registrations", reputation.failed_registrations
            )

        if event.successful_registration:
            reputation.successful_registrations = await self._increment(
                ip, "successful_registrations", reputation.successful_registrations
            )
            if reputation.successful_registrations > FREE_REGISTRATIONS:
                reputation.add_flag(FLAG_MULTIPLE_ACCOUNTS)

        if event.spam_account_created:
            reputation.spam_accounts_created = await self._increment(
                ip, "spam_accounts_created", reputation.spam_accounts_created
            )
            reputation.add_flag(FLAG_SPAM_CREATOR)

        if event.rate_limit_hit:
            reputation.rate_limit_hits = await self._increment(
                ip, "rate_limit_hits", reputation.rate_limit_hits
            )
            if reputation.rate_limit_hits > RATE_LIMIT_ABUSE_COUNT:
                reputation.add_flag(FLAG_RATE_LIMIT_ABUSER)

        if event.flag:
            reputation.add_flag(event.flag)

        if is_datacenter_ip(ip, self.reference):
            reputation.add_flag(FLAG_DATACENTER)
        if is_tor_exit_node(ip, self.reference):
            reputation.add_flag(FLAG_TOR_EXIT)

        reputation.score = max(previous_score, reputation.computed_score())
        reputation.last_activity = now
        if force_block or reputation.score >= THRESHOLD_AUTO_BLOCK:
            reputation.is_blocked = True

        if not loaded:
            return reputation, False
        return reputation, await self._save(reputation)

    async def _save(self, reputation: IPReputation) -> bool:
        try:
            await bounded(
                self.store.set(
                    self._record_key(reputation.ip),
                    reputation.model_dump_json(),
                    IP_REPUTATION_TTL_SECONDS,
                ),
                self.timeout,
            )
        except StoreError as e:
            logger.warning(f"Could not save reputation for {reputation.ip}: {e}")
            return False
        return True

    async def should_block(self, ip: str) -> BlockDecision:
        """Decide whether registrations from an address should be refused."""
        reputation = await self.get_reputation(ip)
        if reputation is None:
            return BlockDecision(blocked=False)

        if reputation.is_blocked:
            return BlockDecision(
                blocked=True,
                reason="IP is blocked because of earlier suspicious activity",
                reputation=reputation,
            )

        if reputation.score >= THRESHOLD_SHOULD_BLOCK:
            return BlockDecision(
                blocked=True,
                reason=f"IP risk score is too high ({reputation.score})",
                reputation=reputation,
            )

        if reputation.spam_accounts_created >= MAX_SPAM_ACCOUNTS:
            return BlockDecision(
                blocked=True,
                reason="IP has created multiple spam accounts",
                reputation=reputation,
            )

        if reputation.successful_registrations >= MAX_REGISTRATIONS:
            return BlockDecision(
                blocked=True,
                reason="Too many accounts created from this IP",
                reputation=reputation,
            )

        return BlockDecision(blocked=False, reputation=reputation)

    async def mark_account_as_spam(self, ip: str) -> IPReputation:
        """Record that an account from this address turned out to be spam."""
        return await self.update_reputation(ip, ReputationEvent(spam_account_created=True))

    async def block(self, ip: str) -> IPReputation | None:
        """Manually block an address (admin action).

        Returns None if the block could not be saved.
        """
        reputation, saved = await self._apply(
            ip,
            ReputationEvent(spam_account_created=True, flag=FLAG_ADMIN_BLOCKED),
            force_block=True,
        )
        if not saved:
            logger.warning(f"Could not block {ip}, reputation store unavailable")
            return None
        return reputation

    async def unblock(self, ip: str) -> bool:
        """Forget everything about an address. Returns False if the store failed."""
        keys = [self._record_key(ip)] + [self._counter_key(ip, c) for c in COUNTERS]
        try:
            for key in keys:
                await bounded(self.store.delete(key), self.timeout)
        except StoreError as e:
            logger.warning(f"Could not unblock {ip}: {e}")
            return False
        logger.info(f"Reputation for {ip} cleared")
        return True

    async def get_blocked_ips(self, limit: int = 100) -> list[IPReputation]:
        """List blocked or high-risk addresses, worst first."""
        try:
            keys = await bounded(self.store.keys(IP_REPUTATION_PREFIX), self.timeout)
        except StoreError as e:
            logger.warning(f"Could not list reputation records: {e}")
            return []

        blocked: list[IPReputation] = []
        for key in keys[:limit]:
            reputation = await self.get_reputation(key[len(IP_REPUTATION_PREFIX) :])
            if reputation and (
                reputation.is_blocked or reputation.score >= THRESHOLD_SHOULD_BLOCK
            ):
                blocked.append(reputation)

        return sorted(blocked, key=lambda r: r.score, reverse=True)
