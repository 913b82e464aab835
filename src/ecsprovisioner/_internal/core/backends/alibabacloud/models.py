from typing import Annotated, Dict, List, Literal, Optional

from pydantic import Field, validator

from ecsprovisioner._internal import settings
from ecsprovisioner._internal.core.errors import ConfigurationError
from ecsprovisioner._internal.core.models.common import CoreModel


class AlibabaCloudAccessKeyCreds(CoreModel):
    type: Annotated[Literal["access_key"], Field(description="The type of credentials")] = (
        "access_key"
    )
    access_key_id: Annotated[str, Field(description="The access key ID")]
    access_key_secret: Annotated[str, Field(description="The access key secret")]
    security_token: Annotated[
        Optional[str], Field(description="The STS token if the access key is temporary")
    ] = None


class AlibabaCloudConfig(CoreModel):
    region: Annotated[str, Field(description="The region to launch instances in")]
    cluster_id: Annotated[str, Field(description="The ACK cluster ID")]
    provisioning_group_qps: Annotated[
        int,
        Field(description="The burst capacity of the provisioning group creation rate limiter"),
    ] = 100
    connect_timeout: Annotated[
        int, Field(description="The API connect timeout in milliseconds")
    ] = 5000
    read_timeout: Annotated[int, Field(description="The API read timeout in milliseconds")] = (
        30000
    )
    creds: Optional[AlibabaCloudAccessKeyCreds] = None

    @validator("provisioning_group_qps")
    def validate_provisioning_group_qps(cls, v):
        if v < 1:
            raise ValueError("provisioning_group_qps must be at least 1")
        return v

    @classmethod
    def from_settings(
        cls, creds: Optional[AlibabaCloudAccessKeyCreds] = None
    ) -> "AlibabaCloudConfig":
        if not settings.REGION:
            raise ConfigurationError("ECSPROVISIONER_REGION is not set")
        if not settings.CLUSTER_ID:
            raise ConfigurationError("ECSPROVISIONER_CLUSTER_ID is not set")
        return cls(
            region=settings.REGION,
            cluster_id=settings.CLUSTER_ID,
            provisioning_group_qps=settings.PROVISIONING_GROUP_QPS,
            connect_timeout=settings.API_CONNECT_TIMEOUT,
            read_timeout=settings.API_READ_TIMEOUT,
            creds=creds,
        )


class LaunchTemplateConfig(CoreModel):
    instance_type: str
    vswitch_id: str
    weighted_capacity: float = 1


class LaunchConfiguration(CoreModel):
    image_id: str
    user_data: str
    resource_group_id: Optional[str] = None
    security_group_ids: List[str] = []
    system_disk_size: Optional[int] = None
    system_disk_performance_level: Optional[str] = None
    tags: Dict[str, str] = {}


class ProvisioningGroupRequest(CoreModel):
    """
    An instant auto provisioning group that launches one instance
    choosing among `launch_template_configs`.
    """

    region_id: str
    total_target_capacity: str = "1"
    spot_target_capacity: str
    pay_as_you_go_target_capacity: str
    spot_allocation_strategy: str = "lowest-price"
    pay_as_you_go_allocation_strategy: str = "lowest-price"
    excess_capacity_termination_policy: str = "termination"
    auto_provisioning_group_type: str = "instant"
    launch_template_configs: List[LaunchTemplateConfig]
    launch_configuration: LaunchConfiguration
    system_disk_categories: List[str] = []
    tags: Dict[str, str] = {}


class LaunchResult(CoreModel):
    instance_type: Optional[str] = None
    zone_id: Optional[str] = None
    instance_ids: List[str] = []
    spot_strategy: Optional[str] = None
    error_code: Optional[str] = None
    error_msg: Optional[str] = None


class ProvisioningGroupResponse(CoreModel):
    status_code: Optional[int] = None
    request_id: Optional[str] = None
    auto_provisioning_group_id: Optional[str] = None
    # None if the response has no body or no launch results
    launch_results: Optional[List[LaunchResult]] = None


class ECSInstance(CoreModel):
    instance_id: str
    instance_type: str
    zone_id: str
    status: str
    spot_strategy: Optional[str] = None
    creation_time: Optional[str] = None
    image_id: Optional[str] = None
    tags: Dict[str, str] = {}


class DescribeInstancesPage(CoreModel):
    instances: List[ECSInstance] = []
    next_token: Optional[str] = None
