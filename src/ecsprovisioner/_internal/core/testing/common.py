from typing import Dict, List, Optional

from ecsprovisioner._internal.core.backends.alibabacloud.models import (
    AlibabaCloudConfig,
    DescribeInstancesPage,
    ECSInstance,
    LaunchResult,
    ProvisioningGroupResponse,
)
from ecsprovisioner._internal.core.backends.base.compute import (
    ImageFamilyResolver,
    UserDataProvider,
    VSwitch,
    VSwitchProvider,
)
from ecsprovisioner._internal.core.consts import CAPACITY_TYPE_LABEL
from ecsprovisioner._internal.core.models.instances import (
    Capacity,
    CapacityType,
    InstanceShape,
    Offering,
)
from ecsprovisioner._internal.core.models.node_templates import (
    Image,
    KubeletConfiguration,
    NodeTemplate,
    NodeTemplateSpec,
    NodeTemplateStatus,
    SecurityGroup,
    SystemDisk,
    VSwitchSelectionPolicy,
)
from ecsprovisioner._internal.core.models.requirements import (
    NodeRequest,
    NodeSelectorRequirement,
    Operator,
)


class FakeClock:
    """
    A manually advanced clock. `sleep()` advances the clock instead of blocking.
    """

    def __init__(self, start: float = 1000.0):
        self.time = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.time

    def advance(self, seconds: float):
        self.time += seconds

    def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.advance(seconds)


def get_offering(
    capacity_type: CapacityType = CapacityType.ON_DEMAND,
    zone: str = "cn-hangzhou-a",
    price: float = 0.1,
    available: bool = True,
) -> Offering:
    return Offering(capacity_type=capacity_type, zone=zone, price=price, available=available)


def get_instance_shape(
    name: str = "ecs.g7.large",
    offerings: Optional[List[Offering]] = None,
    cpus: float = 2,
    memory_mib: int = 8192,
    nvidia_gpus: int = 0,
    labels: Optional[Dict[str, List[str]]] = None,
) -> InstanceShape:
    if offerings is None:
        offerings = [get_offering()]
    if labels is None:
        labels = {}
    return InstanceShape(
        name=name,
        capacity=Capacity(cpus=cpus, memory_mib=memory_mib, nvidia_gpus=nvidia_gpus),
        offerings=offerings,
        labels=labels,
    )


def get_node_request(
    name: str = "test-node",
    labels: Optional[Dict[str, str]] = None,
    capacity_types: Optional[List[CapacityType]] = None,
    requirements: Optional[List[NodeSelectorRequirement]] = None,
) -> NodeRequest:
    if labels is None:
        labels = {}
    if requirements is None:
        requirements = []
    if capacity_types is not None:
        requirements = [
            NodeSelectorRequirement(
                key=CAPACITY_TYPE_LABEL,
                operator=Operator.IN,
                values=[ct.value for ct in capacity_types],
            ),
            *requirements,
        ]
    return NodeRequest(name=name, labels=labels, requirements=requirements)


def get_node_template(
    name: str = "test-template",
    images: Optional[List[Image]] = None,
    security_groups: Optional[List[SecurityGroup]] = None,
    tags: Optional[Dict[str, str]] = None,
    vswitch_selection_policy: VSwitchSelectionPolicy = VSwitchSelectionPolicy.CHEAPEST,
    system_disk: Optional[SystemDisk] = None,
    kubelet_configuration: Optional[KubeletConfiguration] = None,
    resource_group_id: Optional[str] = None,
) -> NodeTemplate:
    if images is None:
        images = [Image(id="aliyun_3_x64_20G_alibase_20240819.vhd")]
    if security_groups is None:
        security_groups = [SecurityGroup(id="sg-test")]
    if tags is None:
        tags = {}
    return NodeTemplate(
        name=name,
        spec=NodeTemplateSpec(
            vswitch_selection_policy=vswitch_selection_policy,
            system_disk=system_disk,
            kubelet_configuration=kubelet_configuration,
            tags=tags,
            resource_group_id=resource_group_id,
        ),
        status=NodeTemplateStatus(images=images, security_groups=security_groups),
    )


def get_config(
    region: str = "cn-hangzhou",
    cluster_id: str = "c-test",
    provisioning_group_qps: int = 100,
) -> AlibabaCloudConfig:
    return AlibabaCloudConfig(
        region=region,
        cluster_id=cluster_id,
        provisioning_group_qps=provisioning_group_qps,
    )


def get_launch_result(
    instance_type: Optional[str] = "ecs.g7.large",
    zone_id: Optional[str] = "cn-hangzhou-a",
    instance_ids: Optional[List[str]] = None,
    error_code: Optional[str] = None,
    error_msg: Optional[str] = None,
) -> LaunchResult:
    if instance_ids is None:
        instance_ids = [] if error_code else ["i-test"]
    return LaunchResult(
        instance_type=instance_type,
        zone_id=zone_id,
        instance_ids=instance_ids,
        error_code=error_code,
        error_msg=error_msg,
    )


def get_provisioning_group_response(
    launch_results: Optional[List[LaunchResult]] = None,
    status_code: Optional[int] = 200,
    request_id: Optional[str] = "req-test",
) -> ProvisioningGroupResponse:
    if launch_results is None:
        launch_results = [get_launch_result()]
    return ProvisioningGroupResponse(
        status_code=status_code,
        request_id=request_id,
        auto_provisioning_group_id="apg-test",
        launch_results=launch_results,
    )


def get_ecs_instance(
    instance_id: str = "i-test",
    instance_type: str = "ecs.g7.large",
    zone_id: str = "cn-hangzhou-a",
    status: str = "Running",
    spot_strategy: Optional[str] = "NoSpot",
    creation_time: Optional[str] = "2024-07-01T08:16Z",
    tags: Optional[Dict[str, str]] = None,
) -> ECSInstance:
    if tags is None:
        tags = {}
    return ECSInstance(
        instance_id=instance_id,
        instance_type=instance_type,
        zone_id=zone_id,
        status=status,
        spot_strategy=spot_strategy,
        creation_time=creation_time,
        image_id="aliyun_3_x64_20G_alibase_20240819.vhd",
        tags=tags,
    )


def get_describe_instances_page(
    instances: Optional[List[ECSInstance]] = None,
    next_token: Optional[str] = None,
) -> DescribeInstancesPage:
    if instances is None:
        instances = []
    return DescribeInstancesPage(instances=instances, next_token=next_token)


class StaticVSwitchProvider(VSwitchProvider):
    def __init__(self, zonal_vswitches: Optional[Dict[str, VSwitch]] = None):
        if zonal_vswitches is None:
            zonal_vswitches = {
                "cn-hangzhou-a": VSwitch(id="vsw-a", zone="cn-hangzhou-a"),
                "cn-hangzhou-b": VSwitch(id="vsw-b", zone="cn-hangzhou-b"),
            }
        self.zonal_vswitches = zonal_vswitches
        self.calls: List[CapacityType] = []

    def zonal_vswitches_for_launch(
        self,
        node_template: NodeTemplate,
        instance_shapes: List[InstanceShape],
        capacity_type: CapacityType,
    ) -> Dict[str, VSwitch]:
        self.calls.append(capacity_type)
        return self.zonal_vswitches


class StaticImageFamilyResolver(ImageFamilyResolver):
    def __init__(self, unsupported_instance_types: Optional[List[str]] = None):
        if unsupported_instance_types is None:
            unsupported_instance_types = []
        self.unsupported_instance_types = unsupported_instance_types

    def filter_instance_shapes_by_system_disk(
        self,
        node_template: NodeTemplate,
        instance_shapes: List[InstanceShape],
    ) -> List[InstanceShape]:
        return [s for s in instance_shapes if s.name not in self.unsupported_instance_types]


class StaticUserDataProvider(UserDataProvider):
    def __init__(self, user_data: str = "#!/bin/bash\necho register"):
        self.user_data = user_data
        self.calls: List[Dict[str, str]] = []

    def get_node_register_script(
        self,
        labels: Dict[str, str],
        kubelet_configuration: KubeletConfiguration,
    ) -> str:
        self.calls.append(labels)
        return self.user_data
