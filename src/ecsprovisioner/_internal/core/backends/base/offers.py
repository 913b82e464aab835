import math
import random
from typing import Dict, List, Optional, Set

from ecsprovisioner._internal.core.backends.base.compute import VSwitch
from ecsprovisioner._internal.core.consts import CAPACITY_TYPE_LABEL, ZONE_LABEL
from ecsprovisioner._internal.core.errors import ProvisioningError
from ecsprovisioner._internal.core.models.instances import (
    CapacityType,
    InstanceShape,
    cheapest_offering,
)
from ecsprovisioner._internal.core.models.node_templates import Image, VSwitchSelectionPolicy
from ecsprovisioner._internal.core.models.requirements import (
    Operator,
    Requirement,
    Requirements,
)

# Upper bound on instance types passed to one provisioning group.
MAX_INSTANCE_TYPES = 20
# Falling back to on-demand with fewer instance types risks insufficient capacity errors.
INSTANCE_TYPE_FLEXIBILITY_THRESHOLD = 5


def filter_instance_shapes(
    requirements: Requirements, instance_shapes: List[InstanceShape]
) -> List[InstanceShape]:
    """
    Limits the instance shapes to those that make the most sense to launch:
    no exotic shapes if generic ones fit, and no spot shapes that cost more than
    the cheapest sufficient on-demand shape.
    """
    instance_shapes = filter_exotic_instance_shapes(instance_shapes)
    if is_mixed_capacity_launch(requirements, instance_shapes):
        instance_shapes = filter_unwanted_spot(requirements, instance_shapes)
    return instance_shapes


def filter_exotic_instance_shapes(instance_shapes: List[InstanceShape]) -> List[InstanceShape]:
    """
    Drops bare metal and GPU shapes. Returns `instance_shapes` unchanged
    if no generic shape remains.
    """
    generic_shapes = [
        shape
        for shape in instance_shapes
        if not shape.is_metal() and not shape.capacity.has_gpus()
    ]
    if len(generic_shapes) > 0:
        return generic_shapes
    return instance_shapes


def is_mixed_capacity_launch(
    requirements: Requirements, instance_shapes: List[InstanceShape]
) -> bool:
    """
    Returns `True` if the requirements and the available offerings
    allow launching either a spot or an on-demand instance.
    """
    capacity_type_requirement = requirements.get(CAPACITY_TYPE_LABEL)
    if not capacity_type_requirement.has(
        CapacityType.SPOT.value
    ) or not capacity_type_requirement.has(CapacityType.ON_DEMAND.value):
        return False
    has_spot_offerings = False
    has_on_demand_offerings = False
    for shape in instance_shapes:
        for offering in shape.compatible_offerings(requirements):
            if offering.capacity_type == CapacityType.SPOT:
                has_spot_offerings = True
            else:
                has_on_demand_offerings = True
    return has_spot_offerings and has_on_demand_offerings


def filter_unwanted_spot(
    requirements: Requirements, instance_shapes: List[InstanceShape]
) -> List[InstanceShape]:
    """
    Drops the shapes whose cheapest available offering costs more than the cheapest
    compatible on-demand offering. This prevents launching a larger spot instance
    at a higher price than a sufficiently large on-demand instance.
    Returns `instance_shapes` unchanged if every shape would be dropped.
    """
    cheapest_on_demand = math.inf
    for shape in instance_shapes:
        for offering in shape.compatible_offerings(requirements):
            if offering.capacity_type == CapacityType.ON_DEMAND:
                cheapest_on_demand = min(cheapest_on_demand, offering.price)
    filtered_shapes = []
    for shape in instance_shapes:
        offering = cheapest_offering(shape.available_offerings())
        if offering is None:
            continue
        if offering.price <= cheapest_on_demand:
            filtered_shapes.append(shape)
    if len(filtered_shapes) > 0:
        return filtered_shapes
    return instance_shapes


def order_by_price(
    requirements: Requirements, instance_shapes: List[InstanceShape]
) -> List[InstanceShape]:
    """
    Sorts the shapes by their cheapest compatible available offering.
    Shapes without such offerings go last. The sort is stable.
    """

    def _get_price(shape: InstanceShape) -> float:
        offering = cheapest_offering(shape.compatible_offerings(requirements))
        if offering is None:
            return math.inf
        return offering.price

    return sorted(instance_shapes, key=_get_price)


def truncate_instance_shapes(
    requirements: Requirements,
    instance_shapes: List[InstanceShape],
    max_items: int = MAX_INSTANCE_TYPES,
) -> List[InstanceShape]:
    truncated_shapes = order_by_price(requirements, instance_shapes)[:max_items]
    if requirements.has_min_values():
        key = get_unsatisfied_min_values_key(requirements, truncated_shapes)
        if key is not None:
            raise ProvisioningError(
                f"Failed to truncate instance types: minValues requirement for {key!r}"
                f" is not satisfied by the {len(truncated_shapes)} cheapest instance types"
            )
    return truncated_shapes


def get_unsatisfied_min_values_key(
    requirements: Requirements, instance_shapes: List[InstanceShape]
) -> Optional[str]:
    """
    Returns the first requirement key for which `instance_shapes` offer
    fewer distinct values than the requirement's `min_values`.
    """
    for requirement in requirements:
        if requirement.min_values is None:
            continue
        values: Set[str] = set()
        for shape in instance_shapes:
            shape_requirement = shape.get_requirements().get(requirement.key)
            if shape_requirement.complement:
                continue
            values.update(v for v in shape_requirement.values if requirement.has(v))
        if len(values) < requirement.min_values:
            return requirement.key
    return None


def get_capacity_type(
    requirements: Requirements, instance_shapes: List[InstanceShape]
) -> CapacityType:
    """
    Selects spot if it's allowed by the requirements and there is an available
    compatible spot offering. Otherwise, selects on-demand.
    """
    if requirements.get(CAPACITY_TYPE_LABEL).has(CapacityType.SPOT.value):
        spot_requirements = requirements.with_requirement(
            Requirement(CAPACITY_TYPE_LABEL, Operator.IN, [CapacityType.SPOT.value])
        )
        for shape in instance_shapes:
            if len(shape.compatible_offerings(spot_requirements)) > 0:
                return CapacityType.SPOT
    return CapacityType.ON_DEMAND


def check_on_demand_fallback(
    requirements: Requirements, instance_shapes: List[InstanceShape]
) -> Optional[str]:
    """
    Returns a warning message if an on-demand launch that could have been spot
    has too few instance types to be flexible.
    """
    if get_capacity_type(requirements, instance_shapes) != CapacityType.ON_DEMAND:
        return None
    if not requirements.get(CAPACITY_TYPE_LABEL).has(CapacityType.SPOT.value):
        return None
    if len(instance_shapes) < INSTANCE_TYPE_FLEXIBILITY_THRESHOLD:
        return (
            f"At least {INSTANCE_TYPE_FLEXIBILITY_THRESHOLD} instance types are recommended"
            " when flexible to spot but requesting on-demand,"
            " the current provisioning request only has"
            f" {len(instance_shapes)} instance type options"
        )
    return None


def map_images_to_instance_shapes(
    instance_shapes: List[InstanceShape], images: List[Image]
) -> Dict[str, str]:
    """
    Maps instance type names to the id of the first image compatible with the instance type.
    Instance types with no compatible image are omitted.
    """
    image_ids = {}
    for shape in instance_shapes:
        shape_requirements = shape.get_requirements()
        for image in images:
            image_requirements = Requirements.from_node_selector_requirements(image.requirements)
            if shape_requirements.compatible(image_requirements):
                image_ids[shape.name] = image.id
                break
    return image_ids


def choose_vswitch_id(
    instance_shape: InstanceShape,
    zonal_vswitches: Dict[str, VSwitch],
    requirements: Requirements,
    capacity_type: CapacityType,
    vswitch_selection_policy: VSwitchSelectionPolicy,
    rng: random.Random,
) -> Optional[str]:
    """
    Picks the vswitch to launch `instance_shape` into.
    On-demand launches and the balanced policy pick a random zone.
    Otherwise, picks the zone of the cheapest compatible offering. Ties keep the first offering.
    """
    if capacity_type == CapacityType.ON_DEMAND or (
        vswitch_selection_policy == VSwitchSelectionPolicy.BALANCED
    ):
        if len(zonal_vswitches) > 0:
            zone = rng.choice(list(zonal_vswitches))
            return zonal_vswitches[zone].id
    cheapest_vswitch_id = None
    cheapest_price = math.inf
    for offering in instance_shape.compatible_offerings(requirements):
        zone = offering.get_requirements().get(ZONE_LABEL).any()
        vswitch = zonal_vswitches.get(zone) if zone is not None else None
        if vswitch is None:
            continue
        if offering.price < cheapest_price:
            cheapest_vswitch_id = vswitch.id
            cheapest_price = offering.price
    return cheapest_vswitch_id
