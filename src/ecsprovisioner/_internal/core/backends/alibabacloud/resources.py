from typing import Dict, List

from ecsprovisioner._internal.core.backends.alibabacloud.models import (
    ECSInstance,
    LaunchConfiguration,
    LaunchResult,
    LaunchTemplateConfig,
    ProvisioningGroupRequest,
    ProvisioningGroupResponse,
)
from ecsprovisioner._internal.core.consts import PROVISIONING_GROUP_TAG
from ecsprovisioner._internal.core.errors import (
    ComputeError,
    InsufficientCapacityError,
    ProvisioningError,
)
from ecsprovisioner._internal.core.models.instances import (
    CapacityType,
    InstanceStatus,
    LaunchedInstance,
)
from ecsprovisioner._internal.core.models.node_templates import NodeTemplate
from ecsprovisioner._internal.utils.common import get_current_datetime, parse_datetime

# Both codes mean there is no capacity for the instance type in the zone.
NO_INSTANCE_STOCK_ERROR_CODE = "NoInstanceStock"
OPERATION_DENIED_NO_STOCK_ERROR_CODE = "OperationDenied.NoStock"
STOCK_OUT_ERROR_CODES = frozenset(
    [
        NO_INSTANCE_STOCK_ERROR_CODE,
        OPERATION_DENIED_NO_STOCK_ERROR_CODE,
    ]
)
NO_SPOT_STRATEGY = "NoSpot"
HTTP_STATUS_OK = 200


def get_provisioning_group_request(
    region: str,
    node_template: NodeTemplate,
    launch_template_configs: List[LaunchTemplateConfig],
    image_id: str,
    user_data: str,
    capacity_type: CapacityType,
    tags: Dict[str, str],
) -> ProvisioningGroupRequest:
    system_disk = node_template.get_system_disk()
    if capacity_type == CapacityType.SPOT:
        spot_target_capacity, pay_as_you_go_target_capacity = "1", "0"
    else:
        spot_target_capacity, pay_as_you_go_target_capacity = "0", "1"
    return ProvisioningGroupRequest(
        region_id=region,
        spot_target_capacity=spot_target_capacity,
        pay_as_you_go_target_capacity=pay_as_you_go_target_capacity,
        launch_template_configs=launch_template_configs,
        launch_configuration=LaunchConfiguration(
            # The image is shared by all launch template configs
            image_id=image_id,
            user_data=user_data,
            resource_group_id=node_template.spec.resource_group_id,
            security_group_ids=[sg.id for sg in node_template.status.security_groups],
            system_disk_size=system_disk.get_gib_size() or None,
            system_disk_performance_level=system_disk.performance_level,
            tags=tags,
        ),
        system_disk_categories=system_disk.categories,
        tags={PROVISIONING_GROUP_TAG: "true"},
    )


def is_stock_out(launch_result: LaunchResult) -> bool:
    return launch_result.error_code in STOCK_OUT_ERROR_CODES


def get_stock_out_launch_results(response: ProvisioningGroupResponse) -> List[LaunchResult]:
    """
    Returns the stock-out launch results that identify the instance type and zone.
    """
    if not response.launch_results:
        return []
    return [
        r for r in response.launch_results if is_stock_out(r) and r.instance_type and r.zone_id
    ]


def check_provisioning_group_response(response: ProvisioningGroupResponse) -> LaunchResult:
    """
    Returns the launch result of the launched instance.

    Raises:
        InsufficientCapacityError: the launch failed due to a stock-out.
        ProvisioningError: the response is malformed or no instance was launched.
    """
    if response.launch_results is None:
        raise ProvisioningError(
            f"Invalid response when creating auto provisioning group: {response.dict()}",
            request_id=response.request_id,
        )
    if response.status_code != HTTP_STATUS_OK:
        raise ProvisioningError(
            f"Unexpected status code {response.status_code} when creating auto provisioning group",
            request_id=response.request_id,
        )
    if len(response.launch_results) == 0:
        raise ProvisioningError(
            "No launch results found in auto provisioning group response",
            request_id=response.request_id,
        )
    launch_result = response.launch_results[0]
    if is_stock_out(launch_result):
        raise InsufficientCapacityError(
            f"Failed to launch instance: error_code={launch_result.error_code},"
            f" error_message={launch_result.error_msg}",
            request_id=response.request_id,
        )
    if len(launch_result.instance_ids) == 0:
        raise ProvisioningError(
            f"Failed to launch instance: error_code={launch_result.error_code},"
            f" error_message={launch_result.error_msg}",
            request_id=response.request_id,
        )
    return launch_result


def launched_instance_from_launch_result(
    launch_result: LaunchResult,
    request: ProvisioningGroupRequest,
    capacity_type: CapacityType,
) -> LaunchedInstance:
    return LaunchedInstance(
        id=launch_result.instance_ids[0],
        instance_type=launch_result.instance_type or "",
        zone=launch_result.zone_id or "",
        capacity_type=capacity_type,
        status=InstanceStatus.PENDING,
        created_at=get_current_datetime(),
        image_id=request.launch_configuration.image_id,
        tags=request.launch_configuration.tags,
    )


def launched_instance_from_ecs_instance(instance: ECSInstance) -> LaunchedInstance:
    try:
        status = InstanceStatus(instance.status)
    except ValueError:
        raise ComputeError(
            f"Unknown status {instance.status!r} of instance {instance.instance_id}"
        )
    capacity_type = CapacityType.SPOT
    if instance.spot_strategy in (None, "", NO_SPOT_STRATEGY):
        capacity_type = CapacityType.ON_DEMAND
    created_at = None
    if instance.creation_time:
        created_at = parse_datetime(instance.creation_time)
    return LaunchedInstance(
        id=instance.instance_id,
        instance_type=instance.instance_type,
        zone=instance.zone_id,
        capacity_type=capacity_type,
        status=status,
        created_at=created_at,
        image_id=instance.image_id,
        tags=instance.tags,
    )
