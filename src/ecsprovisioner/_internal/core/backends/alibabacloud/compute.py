import random
import threading
import time
from typing import Callable, Dict, List, Optional

from ecsprovisioner._internal.core.backends.alibabacloud.api_client import ECSAPIClient
from ecsprovisioner._internal.core.backends.alibabacloud.exceptions import (
    AlibabaCloudAPIError,
    is_not_found_error,
)
from ecsprovisioner._internal.core.backends.alibabacloud.models import (
    AlibabaCloudConfig,
    LaunchTemplateConfig,
    ProvisioningGroupRequest,
    ProvisioningGroupResponse,
)
from ecsprovisioner._internal.core.backends.alibabacloud.resources import (
    STOCK_OUT_ERROR_CODES,
    check_provisioning_group_response,
    get_provisioning_group_request,
    get_stock_out_launch_results,
    launched_instance_from_ecs_instance,
    launched_instance_from_launch_result,
)
from ecsprovisioner._internal.core.backends.base.compute import (
    Compute,
    ImageFamilyResolver,
    UserDataProvider,
    VSwitch,
    VSwitchProvider,
    merge_tags,
)
from ecsprovisioner._internal.core.backends.base.offers import (
    MAX_INSTANCE_TYPES,
    check_on_demand_fallback,
    choose_vswitch_id,
    filter_instance_shapes,
    get_capacity_type,
    map_images_to_instance_shapes,
    truncate_instance_shapes,
)
from ecsprovisioner._internal.core.consts import (
    CAPACITY_TYPE_LABEL,
    CLUSTER_OWNERSHIP_TAG_VALUE,
    ECS_CLUSTER_ID_TAG,
    NODE_CLASS_LABEL,
    NODEPOOL_LABEL,
    cluster_ownership_tag,
)
from ecsprovisioner._internal.core.errors import (
    ComputeError,
    ConfigurationError,
    InstanceNotFoundError,
    InsufficientCapacityError,
    LaunchAbortedError,
    OperationNotSupportedError,
    ProvisioningError,
    RateLimitExceededError,
)
from ecsprovisioner._internal.core.models.instances import (
    CapacityType,
    InstanceShape,
    LaunchedInstance,
)
from ecsprovisioner._internal.core.models.node_templates import NodeTemplate
from ecsprovisioner._internal.core.models.requirements import (
    NodeRequest,
    Operator,
    Requirement,
    Requirements,
)
from ecsprovisioner._internal.core.services.cache import InstanceCache, UnavailableOfferings
from ecsprovisioner._internal.core.services.ratelimit import RateLimiter
from ecsprovisioner._internal.utils.logging import get_logger
from ecsprovisioner._internal.utils.tags import validate_tags

logger = get_logger(__name__)

# Provisioning group creation tokens are refilled at this rate per second.
PROVISIONING_GROUP_RATE = 1.0


class AlibabaCloudCompute(Compute):
    """
    Launches and manages ECS instances through auto provisioning groups.

    The unavailable offerings cache is owned by the caller so that it can be shared
    with the offering filters. `start()` starts its cleanup and `close()` stops it.
    """

    def __init__(
        self,
        config: AlibabaCloudConfig,
        vswitch_provider: VSwitchProvider,
        image_family_resolver: ImageFamilyResolver,
        user_data_provider: UserDataProvider,
        unavailable_offerings: UnavailableOfferings,
        api_client: Optional[ECSAPIClient] = None,
        instance_cache: Optional[InstanceCache] = None,
        rate_limiter: Optional[RateLimiter] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__()
        self.config = config
        self.vswitch_provider = vswitch_provider
        self.image_family_resolver = image_family_resolver
        self.user_data_provider = user_data_provider
        self.unavailable_offerings = unavailable_offerings
        self.api_client = api_client if api_client is not None else ECSAPIClient(config)
        self.instance_cache = instance_cache if instance_cache is not None else InstanceCache()
        if rate_limiter is None:
            rate_limiter = RateLimiter(
                rate=PROVISIONING_GROUP_RATE, burst=config.provisioning_group_qps
            )
        self.rate_limiter = rate_limiter
        self._rng = rng if rng is not None else random.Random()
        self._rng_lock = threading.Lock()
        self._clock = clock

    def start(self):
        self.unavailable_offerings.start()

    def close(self):
        self.unavailable_offerings.stop()

    def __enter__(self) -> "AlibabaCloudCompute":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def create_instance(
        self,
        node_request: NodeRequest,
        node_template: NodeTemplate,
        instance_shapes: List[InstanceShape],
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> LaunchedInstance:
        deadline = None
        if timeout is not None:
            deadline = self._clock() + timeout
        try:
            self.rate_limiter.wait(timeout=timeout, cancel_event=cancel_event)
        except RateLimitExceededError as e:
            logger.error("Failed to create instance for %s: %s", node_request.name, e)
            raise
        requirements = node_request.get_requirements()
        # Opinionated filtering would break minValues guarantees
        if not requirements.has_min_values():
            instance_shapes = filter_instance_shapes(requirements, instance_shapes)
        instance_shapes = truncate_instance_shapes(
            requirements, instance_shapes, max_items=MAX_INSTANCE_TYPES
        )
        tags = self._get_tags(node_request, node_template)
        return self._launch_instance(
            node_request=node_request,
            node_template=node_template,
            requirements=requirements,
            instance_shapes=instance_shapes,
            tags=tags,
            deadline=deadline,
            cancel_event=cancel_event,
        )

    def get_instance(self, instance_id: str) -> LaunchedInstance:
        instance = self.instance_cache.get(instance_id)
        if instance is not None:
            return instance
        self.list_instances()
        instance = self.instance_cache.get(instance_id)
        if instance is not None:
            return instance
        raise InstanceNotFoundError(f"Instance {instance_id} not found")

    def list_instances(self) -> List[LaunchedInstance]:
        instances = self._list_instances()
        self.instance_cache.sync(instances)
        return instances

    def delete_instance(self, instance_id: str) -> None:
        instance = self.get_instance(instance_id)
        # ECS rejects deletion of instances that are still being created or started
        if instance.status.is_transitional():
            raise OperationNotSupportedError(instance_id, instance.status.value)
        try:
            self.api_client.delete_instance(instance_id)
        except AlibabaCloudAPIError as e:
            if is_not_found_error(e):
                logger.debug("Instance %s is already terminated", instance_id)
                raise InstanceNotFoundError(f"Instance {instance_id} already terminated") from e
            # The instance may have been deleted concurrently. The cached entry may be stale.
            try:
                instances = self.list_instances()
            except ComputeError as list_error:
                raise ComputeError(
                    f"Failed to terminate instance {instance_id}: {e}; {list_error}"
                ) from e
            if all(i.id != instance_id for i in instances):
                self.instance_cache.delete(instance_id)
                raise InstanceNotFoundError(f"Instance {instance_id} already terminated") from e
            raise ComputeError(f"Failed to terminate instance {instance_id}: {e}") from e
        self.instance_cache.delete(instance_id)
        logger.info("Terminated instance %s", instance_id)

    def create_tags(self, instance_id: str, tags: Dict[str, str]) -> None:
        try:
            self._add_tags(instance_id, tags)
        finally:
            # Tags affect which instances are listed, so the cache is resynced in any case
            self.list_instances()

    def _add_tags(self, instance_id: str, tags: Dict[str, str]):
        try:
            validate_tags(tags)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e
        try:
            self.api_client.add_tags(instance_id, tags)
        except AlibabaCloudAPIError as e:
            if is_not_found_error(e):
                raise InstanceNotFoundError(f"Failed to tag instance {instance_id}: {e}") from e
            raise ComputeError(f"Failed to tag instance {instance_id}: {e}") from e

    def _list_instances(self) -> List[LaunchedInstance]:
        tags = {cluster_ownership_tag(self.config.cluster_id): CLUSTER_OWNERSHIP_TAG_VALUE}
        instances = []
        next_token = None
        while True:
            page = self.api_client.describe_instances(tags=tags, next_token=next_token)
            if len(page.instances) == 0:
                break
            instances.extend(launched_instance_from_ecs_instance(i) for i in page.instances)
            if not page.next_token:
                break
            next_token = page.next_token
        return instances

    def _get_tags(self, node_request: NodeRequest, node_template: NodeTemplate) -> Dict[str, str]:
        static_tags = {
            cluster_ownership_tag(self.config.cluster_id): CLUSTER_OWNERSHIP_TAG_VALUE,
            NODEPOOL_LABEL: node_request.labels.get(NODEPOOL_LABEL, ""),
            ECS_CLUSTER_ID_TAG: self.config.cluster_id,
            NODE_CLASS_LABEL: node_template.name,
        }
        return merge_tags(base_tags=static_tags, resource_tags=node_template.spec.tags)

    def _launch_instance(
        self,
        node_request: NodeRequest,
        node_template: NodeTemplate,
        requirements: Requirements,
        instance_shapes: List[InstanceShape],
        tags: Dict[str, str],
        deadline: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> LaunchedInstance:
        warning = check_on_demand_fallback(requirements, instance_shapes)
        if warning is not None:
            logger.warning("Node %s: %s", node_request.name, warning)
        capacity_type = get_capacity_type(requirements, instance_shapes)
        instance_shapes = self.image_family_resolver.filter_instance_shapes_by_system_disk(
            node_template, instance_shapes
        )
        if len(instance_shapes) == 0:
            raise ProvisioningError("No instance types match the system disk requirements")
        image_ids = map_images_to_instance_shapes(instance_shapes, node_template.status.images)
        image_id = image_ids.get(instance_shapes[0].name)
        if image_id is None:
            raise ProvisioningError(
                f"No image found matching instance type {instance_shapes[0].name}"
            )
        zonal_vswitches = self.vswitch_provider.zonal_vswitches_for_launch(
            node_template, instance_shapes, capacity_type
        )
        request = self._get_provisioning_group_request(
            node_request=node_request,
            node_template=node_template,
            requirements=requirements,
            instance_shapes=instance_shapes,
            zonal_vswitches=zonal_vswitches,
            image_id=image_id,
            capacity_type=capacity_type,
            tags=tags,
        )
        logger.debug(
            "Creating auto provisioning group for %s: capacity type %s, instance types %s",
            node_request.name,
            capacity_type.value,
            [c.instance_type for c in request.launch_template_configs],
        )
        if cancel_event is not None and cancel_event.is_set():
            raise LaunchAbortedError(f"Launch for {node_request.name} cancelled")
        remaining = None
        if deadline is not None:
            remaining = deadline - self._clock()
            if remaining <= 0:
                raise LaunchAbortedError(f"Launch deadline for {node_request.name} exceeded")
        try:
            response = self.api_client.create_auto_provisioning_group(request, timeout=remaining)
        except AlibabaCloudAPIError as e:
            if e.code in STOCK_OUT_ERROR_CODES:
                raise InsufficientCapacityError(
                    f"Failed to create auto provisioning group: {e.message}",
                    request_id=e.request_id,
                ) from e
            raise ProvisioningError(
                f"Failed to create auto provisioning group: {e}", request_id=e.request_id
            ) from e
        self._update_unavailable_offerings(response, capacity_type)
        launch_result = check_provisioning_group_response(response)
        instance = launched_instance_from_launch_result(launch_result, request, capacity_type)
        logger.info(
            "Launched instance %s of type %s in %s (%s) for %s",
            instance.id,
            instance.instance_type,
            instance.zone,
            capacity_type.value,
            node_request.name,
        )
        return instance

    def _get_provisioning_group_request(
        self,
        node_request: NodeRequest,
        node_template: NodeTemplate,
        requirements: Requirements,
        instance_shapes: List[InstanceShape],
        zonal_vswitches: Dict[str, VSwitch],
        image_id: str,
        capacity_type: CapacityType,
        tags: Dict[str, str],
    ) -> ProvisioningGroupRequest:
        requirements = requirements.with_requirement(
            Requirement(CAPACITY_TYPE_LABEL, Operator.IN, [capacity_type.value])
        )
        launch_template_configs = []
        for shape in instance_shapes:
            if len(launch_template_configs) >= MAX_INSTANCE_TYPES - 1:
                break
            with self._rng_lock:
                vswitch_id = choose_vswitch_id(
                    instance_shape=shape,
                    zonal_vswitches=zonal_vswitches,
                    requirements=requirements,
                    capacity_type=capacity_type,
                    vswitch_selection_policy=node_template.spec.vswitch_selection_policy,
                    rng=self._rng,
                )
            if vswitch_id is None:
                continue
            launch_template_configs.append(
                LaunchTemplateConfig(instance_type=shape.name, vswitch_id=vswitch_id)
            )
        if len(launch_template_configs) == 0:
            raise ProvisioningError(
                "No capacity offerings are currently available given the constraints"
            )
        labels = {**node_request.labels, CAPACITY_TYPE_LABEL: capacity_type.value}
        try:
            user_data = self.user_data_provider.get_node_register_script(
                labels, node_template.get_kubelet_configuration()
            )
        except Exception:
            logger.error("Failed to resolve user data for %s", node_request.name)
            raise
        return get_provisioning_group_request(
            region=self.config.region,
            node_template=node_template,
            launch_template_configs=launch_template_configs,
            image_id=image_id,
            user_data=user_data,
            capacity_type=capacity_type,
            tags=tags,
        )

    def _update_unavailable_offerings(
        self, response: ProvisioningGroupResponse, capacity_type: CapacityType
    ):
        for launch_result in get_stock_out_launch_results(response):
            self.unavailable_offerings.mark_unavailable(
                reason=launch_result.error_msg or launch_result.error_code or "",
                instance_type=launch_result.instance_type,
                zone=launch_result.zone_id,
                capacity_type=capacity_type,
            )
