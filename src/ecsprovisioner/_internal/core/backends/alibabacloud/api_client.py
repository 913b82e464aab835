from contextlib import contextmanager
from typing import Dict, Optional

from alibabacloud_ecs20140526 import models as ecs_models
from alibabacloud_ecs20140526.client import Client as ECSClient
from alibabacloud_tea_openapi import models as open_api_models
from alibabacloud_tea_util import models as util_models
from Tea.exceptions import TeaException, UnretryableException

from ecsprovisioner._internal.core.backends.alibabacloud.exceptions import AlibabaCloudAPIError
from ecsprovisioner._internal.core.backends.alibabacloud.models import (
    AlibabaCloudConfig,
    DescribeInstancesPage,
    ECSInstance,
    LaunchResult,
    ProvisioningGroupRequest,
    ProvisioningGroupResponse,
)

DESCRIBE_INSTANCES_MAX_RESULTS = 100


def get_ecs_client(config: AlibabaCloudConfig) -> ECSClient:
    sdk_config = open_api_models.Config(
        region_id=config.region,
        endpoint=f"ecs.{config.region}.aliyuncs.com",
        connect_timeout=config.connect_timeout,
        read_timeout=config.read_timeout,
    )
    if config.creds is not None:
        sdk_config.access_key_id = config.creds.access_key_id
        sdk_config.access_key_secret = config.creds.access_key_secret
        sdk_config.security_token = config.creds.security_token
    return ECSClient(sdk_config)


class ECSAPIClient:
    """
    A thin wrapper around the ECS SDK client. Converts requests and responses
    to the backend models and SDK exceptions to `AlibabaCloudAPIError`.
    """

    def __init__(self, config: AlibabaCloudConfig, client: Optional[ECSClient] = None):
        self.config = config
        self.client = client if client is not None else get_ecs_client(config)

    def create_auto_provisioning_group(
        self, request: ProvisioningGroupRequest, timeout: Optional[float] = None
    ) -> ProvisioningGroupResponse:
        """
        `timeout` in seconds caps the configured connect and read timeouts of the call.
        """
        sdk_request = _to_sdk_provisioning_group_request(request)
        with _translate_errors():
            resp = self.client.create_auto_provisioning_group_with_options(
                sdk_request, self._get_runtime_options(timeout)
            )
        return _from_sdk_provisioning_group_response(resp)

    def describe_instances(
        self, tags: Dict[str, str], next_token: Optional[str] = None
    ) -> DescribeInstancesPage:
        sdk_request = ecs_models.DescribeInstancesRequest(
            region_id=self.config.region,
            tag=[ecs_models.DescribeInstancesRequestTag(key=k, value=v) for k, v in tags.items()],
            max_results=DESCRIBE_INSTANCES_MAX_RESULTS,
            next_token=next_token,
        )
        with _translate_errors():
            resp = self.client.describe_instances_with_options(
                sdk_request, self._get_runtime_options()
            )
        body = resp.body if resp is not None else None
        if body is None or body.instances is None or not body.instances.instance:
            return DescribeInstancesPage()
        return DescribeInstancesPage(
            instances=[_from_sdk_instance(i) for i in body.instances.instance],
            next_token=body.next_token,
        )

    def delete_instance(self, instance_id: str):
        sdk_request = ecs_models.DeleteInstanceRequest(
            instance_id=instance_id,
            force=True,
            terminate_subscription=True,
        )
        with _translate_errors():
            self.client.delete_instance_with_options(sdk_request, self._get_runtime_options())

    def add_tags(self, instance_id: str, tags: Dict[str, str]):
        sdk_request = ecs_models.AddTagsRequest(
            region_id=self.config.region,
            resource_type="instance",
            resource_id=instance_id,
            tag=[ecs_models.AddTagsRequestTag(key=k, value=v) for k, v in tags.items()],
        )
        with _translate_errors():
            self.client.add_tags_with_options(sdk_request, self._get_runtime_options())

    def _get_runtime_options(self, timeout: Optional[float] = None) -> util_models.RuntimeOptions:
        connect_timeout = self.config.connect_timeout
        read_timeout = self.config.read_timeout
        if timeout is not None:
            timeout_ms = max(1, int(timeout * 1000))
            connect_timeout = min(connect_timeout, timeout_ms)
            read_timeout = min(read_timeout, timeout_ms)
        return util_models.RuntimeOptions(
            connect_timeout=connect_timeout,
            read_timeout=read_timeout,
        )


@contextmanager
def _translate_errors():
    try:
        yield
    except TeaException as e:
        raise AlibabaCloudAPIError.from_tea_exception(e) from e
    except UnretryableException as e:
        raise AlibabaCloudAPIError(code=None, message=str(e)) from e


def _to_sdk_provisioning_group_request(
    request: ProvisioningGroupRequest,
) -> ecs_models.CreateAutoProvisioningGroupRequest:
    launch_configuration = request.launch_configuration
    return ecs_models.CreateAutoProvisioningGroupRequest(
        region_id=request.region_id,
        total_target_capacity=request.total_target_capacity,
        spot_target_capacity=request.spot_target_capacity,
        pay_as_you_go_target_capacity=request.pay_as_you_go_target_capacity,
        spot_allocation_strategy=request.spot_allocation_strategy,
        pay_as_you_go_allocation_strategy=request.pay_as_you_go_allocation_strategy,
        excess_capacity_termination_policy=request.excess_capacity_termination_policy,
        auto_provisioning_group_type=request.auto_provisioning_group_type,
        launch_template_config=[
            ecs_models.CreateAutoProvisioningGroupRequestLaunchTemplateConfig(
                instance_type=c.instance_type,
                v_switch_id=c.vswitch_id,
                weighted_capacity=c.weighted_capacity,
            )
            for c in request.launch_template_configs
        ],
        launch_configuration=ecs_models.CreateAutoProvisioningGroupRequestLaunchConfiguration(
            image_id=launch_configuration.image_id,
            user_data=launch_configuration.user_data,
            resource_group_id=launch_configuration.resource_group_id,
            security_group_ids=launch_configuration.security_group_ids,
            system_disk_size=launch_configuration.system_disk_size,
            system_disk_performance_level=launch_configuration.system_disk_performance_level,
            tag=[
                ecs_models.CreateAutoProvisioningGroupRequestLaunchConfigurationTag(
                    key=k, value=v
                )
                for k, v in launch_configuration.tags.items()
            ],
        ),
        system_disk_config=[
            ecs_models.CreateAutoProvisioningGroupRequestSystemDiskConfig(disk_category=c)
            for c in request.system_disk_categories
        ],
        tag=[
            ecs_models.CreateAutoProvisioningGroupRequestTag(key=k, value=v)
            for k, v in request.tags.items()
        ],
    )


def _from_sdk_provisioning_group_response(resp) -> ProvisioningGroupResponse:
    if resp is None:
        return ProvisioningGroupResponse()
    body = resp.body
    if body is None:
        return ProvisioningGroupResponse(status_code=resp.status_code)
    launch_results = None
    if body.launch_results is not None:
        launch_results = [
            _from_sdk_launch_result(r) for r in body.launch_results.launch_result or [] if r
        ]
    return ProvisioningGroupResponse(
        status_code=resp.status_code,
        request_id=body.request_id,
        auto_provisioning_group_id=body.auto_provisioning_group_id,
        launch_results=launch_results,
    )


def _from_sdk_launch_result(result) -> LaunchResult:
    instance_ids = []
    if result.instance_ids is not None and result.instance_ids.instance_id:
        instance_ids = list(result.instance_ids.instance_id)
    return LaunchResult(
        instance_type=result.instance_type,
        zone_id=result.zone_id,
        instance_ids=instance_ids,
        spot_strategy=result.spot_strategy,
        error_code=result.error_code,
        error_msg=result.error_msg,
    )


def _from_sdk_instance(instance) -> ECSInstance:
    tags = {}
    if instance.tags is not None and instance.tags.tag:
        tags = {t.tag_key: t.tag_value or "" for t in instance.tags.tag if t.tag_key}
    return ECSInstance(
        instance_id=instance.instance_id,
        instance_type=instance.instance_type,
        zone_id=instance.zone_id,
        status=instance.status,
        spot_strategy=instance.spot_strategy,
        creation_time=instance.creation_time,
        image_id=instance.image_id,
        tags=tags,
    )
