from enum import Enum
from typing import Dict, List, Optional

from pydantic import validator

from ecsprovisioner._internal.core.models.common import CoreModel
from ecsprovisioner._internal.core.models.requirements import NodeSelectorRequirement
from ecsprovisioner._internal.utils.common import parse_memory
from ecsprovisioner._internal.utils.tags import tags_validator


class VSwitchSelectionPolicy(str, Enum):
    CHEAPEST = "cheapest"
    BALANCED = "balanced"


class SystemDisk(CoreModel):
    categories: List[str] = []
    # Kubernetes quantity, e.g. `60Gi`. Takes priority over `size`.
    volume_size: Optional[str] = None
    size: Optional[int] = None
    performance_level: Optional[str] = None

    def get_gib_size(self) -> int:
        if self.volume_size is not None:
            return int(parse_memory(self.volume_size, as_units="G"))
        if self.size is not None:
            return self.size
        return 0


DEFAULT_SYSTEM_DISK = SystemDisk(
    categories=["cloud", "cloud_efficiency", "cloud_ssd", "cloud_essd", "cloud_auto"],
    size=40,
)


class KubeletConfiguration(CoreModel):
    cluster_dns: List[str] = []
    max_pods: Optional[int] = None
    pods_per_core: Optional[int] = None
    system_reserved: Dict[str, str] = {}
    kube_reserved: Dict[str, str] = {}
    eviction_hard: Dict[str, str] = {}
    eviction_soft: Dict[str, str] = {}
    eviction_soft_grace_period: Dict[str, str] = {}
    eviction_max_pod_grace_period: Optional[int] = None
    image_gc_high_threshold_percent: Optional[int] = None
    image_gc_low_threshold_percent: Optional[int] = None
    cpu_cfs_quota: Optional[bool] = None


class Image(CoreModel):
    id: str
    # Instance type requirements the image is compatible with, e.g. architecture.
    requirements: List[NodeSelectorRequirement] = []


class SecurityGroup(CoreModel):
    id: str
    name: Optional[str] = None


class NodeTemplateSpec(CoreModel):
    vswitch_selection_policy: VSwitchSelectionPolicy = VSwitchSelectionPolicy.CHEAPEST
    kubelet_configuration: Optional[KubeletConfiguration] = None
    system_disk: Optional[SystemDisk] = None
    tags: Dict[str, str] = {}
    resource_group_id: Optional[str] = None

    @validator("tags")
    def validate_tags(cls, v):
        return tags_validator(v)


class NodeTemplateStatus(CoreModel):
    images: List[Image] = []
    security_groups: List[SecurityGroup] = []


class NodeTemplate(CoreModel):
    """
    Resolved ECS launch settings shared by the nodes of a node pool.
    The status is filled by the discovery controllers and only read here.
    """

    name: str
    spec: NodeTemplateSpec = NodeTemplateSpec()
    status: NodeTemplateStatus = NodeTemplateStatus()

    def get_system_disk(self) -> SystemDisk:
        if self.spec.system_disk is None:
            return DEFAULT_SYSTEM_DISK.copy(deep=True)
        return self.spec.system_disk

    def get_kubelet_configuration(self) -> KubeletConfiguration:
        if self.spec.kubelet_configuration is None:
            return KubeletConfiguration()
        return self.spec.kubelet_configuration
