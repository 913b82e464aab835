import threading
import time
from typing import Callable, Generic, Iterable, List, Optional, Tuple, TypeVar

from cachetools import TTLCache

from ecsprovisioner._internal.core.models.common import FrozenCoreModel
from ecsprovisioner._internal.core.models.instances import CapacityType, LaunchedInstance
from ecsprovisioner._internal.utils.logging import get_logger

logger = get_logger(__name__)

# Offerings marked as unavailable are available for launch again after this interval.
UNAVAILABLE_OFFERINGS_TTL = 3 * 60
# Expired unavailable offerings are swept more often than they expire
# so that offerings that got capacity back become visible promptly.
UNAVAILABLE_OFFERINGS_CLEANUP_INTERVAL = 10
INSTANCE_CACHE_TTL = 15
DEFAULT_MAXSIZE = 100_000

KT = TypeVar("KT")
VT = TypeVar("VT")


class TTLStore(Generic[KT, VT]):
    """
    A thread-safe cache of values of one type that expire `ttl` seconds after they were set.
    Expired values are never returned. Setting an existing key refreshes its expiration.
    """

    def __init__(
        self,
        ttl: float,
        maxsize: int = DEFAULT_MAXSIZE,
        timer: Callable[[], float] = time.monotonic,
    ):
        self._lock = threading.Lock()
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl, timer=timer)

    def get(self, key: KT) -> Optional[VT]:
        with self._lock:
            return self._cache.get(key)

    def set(self, key: KT, value: VT):
        with self._lock:
            self._cache[key] = value

    def set_many(self, items: Iterable[Tuple[KT, VT]]):
        with self._lock:
            for key, value in items:
                self._cache[key] = value

    def delete(self, key: KT):
        with self._lock:
            self._cache.pop(key, None)

    def expire(self):
        with self._lock:
            self._cache.expire()

    def values(self) -> List[VT]:
        with self._lock:
            self._cache.expire()
            return list(self._cache.values())

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._cache

    def __len__(self) -> int:
        with self._lock:
            self._cache.expire()
            return len(self._cache)


class UnavailableOffering(FrozenCoreModel):
    instance_type: str
    zone: str
    capacity_type: CapacityType
    reason: str


UnavailableOfferingKey = Tuple[str, str, CapacityType]


class UnavailableOfferings:
    """
    A negative cache of (instance type, zone, capacity type) offerings
    that recently ran out of stock.
    The engine writes entries on stock-outs. Offering filters read them before building candidates.
    """

    def __init__(
        self,
        ttl: float = UNAVAILABLE_OFFERINGS_TTL,
        cleanup_interval: float = UNAVAILABLE_OFFERINGS_CLEANUP_INTERVAL,
        timer: Callable[[], float] = time.monotonic,
    ):
        self._cache: TTLStore[UnavailableOfferingKey, UnavailableOffering] = TTLStore(
            ttl=ttl, timer=timer
        )
        self._cleanup_interval = cleanup_interval
        self._seq_num_lock = threading.Lock()
        self._seq_num = 0
        self._stop_event = threading.Event()
        self._cleanup_thread: Optional[threading.Thread] = None

    @property
    def seq_num(self) -> int:
        """
        Incremented on every write. Allows readers to detect that the cache changed.
        """
        with self._seq_num_lock:
            return self._seq_num

    def mark_unavailable(
        self,
        reason: str,
        instance_type: str,
        zone: str,
        capacity_type: CapacityType,
    ):
        logger.debug(
            "Marking offering %s/%s/%s as unavailable: %s",
            instance_type,
            zone,
            capacity_type.value,
            reason,
        )
        self._cache.set(
            (instance_type, zone, capacity_type),
            UnavailableOffering(
                instance_type=instance_type,
                zone=zone,
                capacity_type=capacity_type,
                reason=reason,
            ),
        )
        with self._seq_num_lock:
            self._seq_num += 1

    def is_unavailable(self, instance_type: str, zone: str, capacity_type: CapacityType) -> bool:
        return (instance_type, zone, capacity_type) in self._cache

    def get_all(self) -> List[UnavailableOffering]:
        return self._cache.values()

    def cleanup(self):
        self._cache.expire()

    def start(self):
        """
        Starts the background thread that removes expired offerings.
        Does nothing if already started.
        """
        if self._cleanup_thread is not None:
            return
        self._stop_event.clear()
        self._cleanup_thread = threading.Thread(
            target=self._cleanup_loop,
            name="unavailable-offerings-cleanup",
            daemon=True,
        )
        self._cleanup_thread.start()

    def stop(self, timeout: Optional[float] = None):
        if self._cleanup_thread is None:
            return
        self._stop_event.set()
        self._cleanup_thread.join(timeout=timeout)
        self._cleanup_thread = None

    @property
    def is_running(self) -> bool:
        return self._cleanup_thread is not None and self._cleanup_thread.is_alive()

    def _cleanup_loop(self):
        while not self._stop_event.wait(self._cleanup_interval):
            self.cleanup()


class InstanceCache(TTLStore[str, LaunchedInstance]):
    """
    Short-lived cache of launched instances keyed by instance id.
    Entries expire passively. A miss means the instances must be listed again.
    """

    def __init__(
        self,
        ttl: float = INSTANCE_CACHE_TTL,
        timer: Callable[[], float] = time.monotonic,
    ):
        super().__init__(ttl=ttl, timer=timer)

    def sync(self, instances: Iterable[LaunchedInstance]):
        self.set_many((instance.id, instance) for instance in instances)
