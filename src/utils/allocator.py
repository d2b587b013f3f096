import logging as log
import random
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from models import Waybill
from utils.carrier import CarrierClient
from utils.errors import (
    ConfigurationError,
    InvalidArgument,
    RateLimited,
    ShippingError,
    Transient,
)
from utils.inventory import WaybillInventory

MAX_WAYBILLS_PER_REQUEST = 10000
BULK_WINDOW_LIMIT = 50000
SINGLE_WINDOW_LIMIT = 750
WINDOW_SECONDS = 300
# The carrier may answer a bulk request with fewer codes (it cuts in batches of 25)
MAX_GENERATION_ROUNDS = 3

LOCAL_FALLBACK = "local-fallback"
CARRIER = "carrier"

SOURCE = Waybill.SourceChoices


class RateWindow:
    """Rolling usage counter over the last ``seconds``."""

    def __init__(self, limit: int, seconds: float = WINDOW_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.limit = limit
        self.seconds = seconds
        self._clock = clock
        self._events = deque()
        self._used = 0
        self._lock = threading.Lock()

    def _expire(self, now: float) -> None:
        while self._events and self._events[0][0] <= now - self.seconds:
            _, amount = self._events.popleft()
            self._used -= amount

    def used(self) -> int:
        with self._lock:
            self._expire(self._clock())
            return self._used

    def acquire(self, amount: int, what: str) -> None:
        """Record ``amount`` against the window or raise RateLimited without recording."""
        with self._lock:
            now = self._clock()
            self._expire(now)
            if self._used + amount > self.limit:
                raise RateLimited(
                    f"{what}: {amount} would exceed {self.limit} per {int(self.seconds)}s "
                    f"({self._used} already used)"
                )
            self._events.append((now, amount))
            self._used += amount


@dataclass
class AllocationContext:
    count: int
    reserved_for: Optional[str]
    prefer_stored: bool
    allow_fallback: bool
    deadline: Optional[float] = None
    waybills: List[Waybill] = field(default_factory=list)
    carrier_error: Optional[ShippingError] = None

    @property
    def remaining(self) -> int:
        return self.count - len(self.waybills)


@dataclass
class Allocation:
    waybills: List[Waybill]

    @property
    def codes(self) -> List[str]:
        return [w.code for w in self.waybills]

    @property
    def is_local_fallback(self) -> bool:
        return any(w.is_local_fallback for w in self.waybills)

    @property
    def source(self) -> str:
        return LOCAL_FALLBACK if self.is_local_fallback else CARRIER

    def to_dict(self):
        return {
            "source": self.source,
            "count": len(self.waybills),
            "waybills": [w.to_dict() for w in self.waybills],
        }


class WaybillSource(ABC):
    name = "source"

    @abstractmethod
    def applies(self, context: AllocationContext) -> bool:
        ...

    @abstractmethod
    def fetch(self, context: AllocationContext) -> List[Waybill]:
        """Return up to ``context.remaining`` waybills, already reserved."""
        ...


class StoredWaybillSource(WaybillSource):
    name = "stored"

    def __init__(self, inventory: WaybillInventory):
        self.inventory = inventory

    def applies(self, context):
        return context.prefer_stored

    def fetch(self, context):
        return self.inventory.claim(context.remaining, reserved_for=context.reserved_for)


class CarrierWaybillSource(WaybillSource):
    name = "carrier"

    def __init__(
        self,
        client: CarrierClient,
        inventory: WaybillInventory,
        bulk_window: RateWindow,
        single_window: RateWindow,
        max_rounds: int = MAX_GENERATION_ROUNDS,
    ):
        self.client = client
        self.inventory = inventory
        self.bulk_window = bulk_window
        self.single_window = single_window
        self.max_rounds = max_rounds

    def applies(self, context):
        return True

    def fetch(self, context):
        count = context.remaining
        if count == 1:
            codes, source = self._fetch_single(context.deadline), SOURCE.CARRIER_SINGLE
        else:
            codes, source = self.generate(count, context.deadline), SOURCE.CARRIER_BULK
        # Store first so codes are never lost, then reserve only what was asked for
        self.inventory.store(codes, source=source)
        return self.inventory.claim_codes(codes[:count], reserved_for=context.reserved_for)

    def _fetch_single(self, deadline) -> List[str]:
        if not self.client.is_configured():
            raise ConfigurationError("Carrier API token is not configured")
        self.single_window.acquire(1, "Single waybill requests")
        return [self.client.fetch_waybill(deadline=deadline)]

    def generate(self, count: int, deadline: Optional[float] = None) -> List[str]:
        """Ask the carrier for ``count`` codes, re-requesting only the shortfall."""
        if not self.client.is_configured():
            raise ConfigurationError("Carrier API token is not configured")

        collected = {}
        for round_no in range(self.max_rounds):
            shortfall = count - len(collected)
            if shortfall <= 0:
                break
            self.bulk_window.acquire(shortfall, "Bulk waybill generation")
            batch = self.client.generate_waybills(shortfall, deadline=deadline)
            for code in batch:
                collected.setdefault(code, None)
            log.info(
                f"Carrier round {round_no + 1}: asked {shortfall}, got {len(batch)} "
                f"({len(collected)}/{count} collected)"
            )
            if not batch:
                break
        codes = list(collected)
        if len(codes) < count:
            log.warning(f"Carrier generated {len(codes)} of {count} waybills")
        return codes


class LocalFallbackWaybillSource(WaybillSource):
    """Syntactically valid 14 digit codes the carrier has never issued.

    Flagged LOCAL_FALLBACK: the inventory never hands them out through
    ``claim`` and the shipment orchestrator refuses them.
    """

    name = LOCAL_FALLBACK
    CODE_LENGTH = 14

    def __init__(self, inventory: WaybillInventory, rng: Optional[random.Random] = None):
        self.inventory = inventory
        self.rng = rng or random.SystemRandom()

    def applies(self, context):
        return context.allow_fallback and isinstance(
            context.carrier_error, (ConfigurationError, Transient)
        )

    def _code(self) -> str:
        first = str(self.rng.randint(1, 9))
        return first + "".join(str(self.rng.randint(0, 9)) for _ in range(self.CODE_LENGTH - 1))

    def fetch(self, context):
        log.warning(
            f"Carrier unavailable ({context.carrier_error.message}); "
            f"generating {context.remaining} local fallback waybill(s)"
        )
        stored: List[str] = []
        while len(stored) < context.remaining:
            codes = [self._code() for _ in range(context.remaining - len(stored))]
            stored.extend(
                self.inventory.store(
                    codes,
                    source=SOURCE.LOCAL_FALLBACK,
                    status=Waybill.StatusChoices.RESERVED,
                    reserved_for=context.reserved_for,
                )
            )
        return [self.inventory.get(code) for code in stored]


# Carrier quotas are per account, so every allocator in the process shares them
BULK_WINDOW = RateWindow(BULK_WINDOW_LIMIT)
SINGLE_WINDOW = RateWindow(SINGLE_WINDOW_LIMIT)


class WaybillAllocator:
    """Satisfies waybill requests through an ordered chain of sources."""

    def __init__(
        self,
        inventory: WaybillInventory,
        client: CarrierClient,
        bulk_window: Optional[RateWindow] = None,
        single_window: Optional[RateWindow] = None,
        sources: Optional[List[WaybillSource]] = None,
    ):
        self.inventory = inventory
        self.client = client
        self.bulk_window = bulk_window or BULK_WINDOW
        self.single_window = single_window or SINGLE_WINDOW
        self.carrier_source = CarrierWaybillSource(
            client, inventory, self.bulk_window, self.single_window
        )
        self.sources = sources or [
            StoredWaybillSource(inventory),
            self.carrier_source,
            LocalFallbackWaybillSource(inventory),
        ]

    @staticmethod
    def validate_count(count: int) -> None:
        if count < 1:
            raise InvalidArgument("count must be at least 1")
        if count > BULK_WINDOW_LIMIT:
            raise RateLimited(
                f"{count} waybills exceed the limit of {BULK_WINDOW_LIMIT} per {WINDOW_SECONDS // 60} minutes"
            )
        if count > MAX_WAYBILLS_PER_REQUEST:
            raise InvalidArgument(f"count must be between 1 and {MAX_WAYBILLS_PER_REQUEST}")

    def allocate(
        self,
        count: int,
        prefer_stored: bool = True,
        reserved_for: Optional[str] = None,
        allow_fallback: bool = True,
        deadline: Optional[float] = None,
    ) -> Allocation:
        self.validate_count(count)
        context = AllocationContext(
            count=count,
            reserved_for=reserved_for,
            prefer_stored=prefer_stored,
            allow_fallback=allow_fallback,
            deadline=deadline,
        )

        try:
            for source in self.sources:
                if context.remaining <= 0:
                    break
                if not source.applies(context):
                    continue
                try:
                    got = source.fetch(context)
                except (ConfigurationError, Transient) as e:
                    if source is not self.carrier_source:
                        raise
                    log.warning(f"Carrier waybill source unavailable: {e.message}")
                    context.carrier_error = e
                    continue
                context.waybills.extend(got)
                log.info(f"Waybill source '{source.name}' supplied {len(got)}, {context.remaining} remaining")

            if context.remaining > 0:
                if context.carrier_error is not None:
                    raise context.carrier_error
                raise Transient(
                    f"Only {len(context.waybills)} of {count} waybills could be allocated"
                )
        except ShippingError:
            self.inventory.release([w.code for w in context.waybills])
            raise

        return Allocation(waybills=context.waybills)

    def replenish(self, min_stock: int, deadline: Optional[float] = None) -> int:
        """Top the pool up to ``min_stock`` available carrier waybills."""
        available = self.inventory.count_available()
        needed = min(min_stock - available, MAX_WAYBILLS_PER_REQUEST)
        if needed <= 0:
            log.info(f"Waybill stock is sufficient: {available} available")
            return 0
        log.info(f"Waybill stock at {available}, generating {needed}")
        codes = self.carrier_source.generate(needed, deadline=deadline)
        return len(self.inventory.store(codes, source=SOURCE.CARRIER_BULK))
