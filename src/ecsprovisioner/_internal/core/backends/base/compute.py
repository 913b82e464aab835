from abc import ABC, abstractmethod
from threading import Event
from typing import Dict, List, Optional

from ecsprovisioner._internal.core.models.common import CoreModel
from ecsprovisioner._internal.core.models.instances import (
    CapacityType,
    InstanceShape,
    LaunchedInstance,
)
from ecsprovisioner._internal.core.models.node_templates import KubeletConfiguration, NodeTemplate
from ecsprovisioner._internal.core.models.requirements import NodeRequest


class VSwitch(CoreModel):
    id: str
    zone: str


class VSwitchProvider(ABC):
    @abstractmethod
    def zonal_vswitches_for_launch(
        self,
        node_template: NodeTemplate,
        instance_shapes: List[InstanceShape],
        capacity_type: CapacityType,
    ) -> Dict[str, VSwitch]:
        """
        Returns the vswitch to launch into for every zone that has compatible offerings
        of `instance_shapes` for `capacity_type`. Zones are keyed by zone id.
        """
        pass


class ImageFamilyResolver(ABC):
    @abstractmethod
    def filter_instance_shapes_by_system_disk(
        self,
        node_template: NodeTemplate,
        instance_shapes: List[InstanceShape],
    ) -> List[InstanceShape]:
        """
        Drops the instance shapes that do not support any of the template's system disk categories.
        """
        pass


class UserDataProvider(ABC):
    @abstractmethod
    def get_node_register_script(
        self,
        labels: Dict[str, str],
        kubelet_configuration: KubeletConfiguration,
    ) -> str:
        pass


class Compute(ABC):
    """
    A base class for instance provisioning implementations.
    All methods may be called concurrently from multiple threads.
    """

    @abstractmethod
    def create_instance(
        self,
        node_request: NodeRequest,
        node_template: NodeTemplate,
        instance_shapes: List[InstanceShape],
        timeout: Optional[float] = None,
        cancel_event: Optional[Event] = None,
    ) -> LaunchedInstance:
        """
        Launches one instance for `node_request` choosing among `instance_shapes`.
        `timeout` bounds the whole launch: the rate limiter wait and the provisioning API call.
        Setting `cancel_event` aborts the launch if it has not been submitted yet.
        """
        pass

    @abstractmethod
    def get_instance(self, instance_id: str) -> LaunchedInstance:
        pass

    @abstractmethod
    def list_instances(self) -> List[LaunchedInstance]:
        pass

    @abstractmethod
    def delete_instance(self, instance_id: str) -> None:
        """
        Deletes the instance. Raises `InstanceNotFoundError` if the instance is already gone.
        """
        pass

    @abstractmethod
    def create_tags(self, instance_id: str, tags: Dict[str, str]) -> None:
        pass


def merge_tags(
    base_tags: Dict[str, str],
    resource_tags: Optional[Dict[str, str]] = None,
) -> Dict[str, str]:
    res = base_tags.copy()
    # base_tags have priority over resource_tags
    # so that user-defined tags cannot override ownership tags
    if resource_tags is not None:
        for k, v in resource_tags.items():
            res.setdefault(k, v)
    return res
