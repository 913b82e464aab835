import datetime
from enum import Enum
from typing import Dict, List, Optional

from ecsprovisioner._internal.core.consts import (
    CAPACITY_TYPE_LABEL,
    INSTANCE_SIZE_LABEL,
    INSTANCE_TYPE_LABEL,
    ZONE_LABEL,
)
from ecsprovisioner._internal.core.models.common import CoreModel
from ecsprovisioner._internal.core.models.requirements import (
    Operator,
    Requirement,
    Requirements,
)


class CapacityType(str, Enum):
    SPOT = "spot"
    ON_DEMAND = "on-demand"


class InstanceStatus(str, Enum):
    PENDING = "Pending"
    STARTING = "Starting"
    RUNNING = "Running"
    STOPPING = "Stopping"
    STOPPED = "Stopped"
    TERMINATED = "Terminated"

    def is_transitional(self) -> bool:
        """
        Returns `True` for states in which the ECS API rejects deletion.
        """
        return self in (
            self.PENDING,
            self.STARTING,
        )


class Capacity(CoreModel):
    cpus: float
    memory_mib: int
    nvidia_gpus: int = 0
    amd_gpus: int = 0

    def has_gpus(self) -> bool:
        return self.nvidia_gpus > 0 or self.amd_gpus > 0


class Offering(CoreModel):
    capacity_type: CapacityType
    zone: str
    price: float
    available: bool = True

    def get_requirements(self) -> Requirements:
        return Requirements(
            [
                Requirement(CAPACITY_TYPE_LABEL, Operator.IN, [self.capacity_type.value]),
                Requirement(ZONE_LABEL, Operator.IN, [self.zone]),
            ]
        )


class InstanceShape(CoreModel):
    """
    An ECS instance type with its capacity and the offerings it can be launched with.
    `labels` holds the instance type's own requirements, e.g. architecture or instance size.
    """

    name: str
    capacity: Capacity
    offerings: List[Offering] = []
    labels: Dict[str, List[str]] = {}

    def get_requirements(self) -> Requirements:
        requirements = [Requirement(k, Operator.IN, v) for k, v in self.labels.items()]
        requirements.append(Requirement(INSTANCE_TYPE_LABEL, Operator.IN, [self.name]))
        return Requirements(requirements)

    def available_offerings(self) -> List[Offering]:
        return [o for o in self.offerings if o.available]

    def compatible_offerings(
        self, requirements: Requirements, available_only: bool = True
    ) -> List[Offering]:
        offerings = self.available_offerings() if available_only else self.offerings
        return [o for o in offerings if requirements.compatible(o.get_requirements())]

    def is_metal(self) -> bool:
        size = self.get_requirements().get(INSTANCE_SIZE_LABEL)
        if size.complement:
            return False
        return any("metal" in v for v in size.values)


def cheapest_offering(offerings: List[Offering]) -> Optional[Offering]:
    """
    Returns the cheapest offering. Ties keep the first offering.
    """
    cheapest = None
    for offering in offerings:
        if cheapest is None or offering.price < cheapest.price:
            cheapest = offering
    return cheapest


class LaunchedInstance(CoreModel):
    id: str
    instance_type: str
    zone: str
    capacity_type: CapacityType
    status: InstanceStatus
    created_at: Optional[datetime.datetime] = None
    image_id: Optional[str] = None
    tags: Dict[str, str] = {}
