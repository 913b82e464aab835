import random
from typing import List

import pytest

from ecsprovisioner._internal.core.backends.base.compute import VSwitch
from ecsprovisioner._internal.core.backends.base.offers import (
    check_on_demand_fallback,
    choose_vswitch_id,
    filter_exotic_instance_shapes,
    filter_instance_shapes,
    filter_unwanted_spot,
    get_capacity_type,
    get_unsatisfied_min_values_key,
    is_mixed_capacity_launch,
    map_images_to_instance_shapes,
    order_by_price,
    truncate_instance_shapes,
)
from ecsprovisioner._internal.core.consts import (
    CAPACITY_TYPE_LABEL,
    INSTANCE_SIZE_LABEL,
    INSTANCE_TYPE_LABEL,
)
from ecsprovisioner._internal.core.errors import ProvisioningError
from ecsprovisioner._internal.core.models.instances import CapacityType
from ecsprovisioner._internal.core.models.node_templates import Image, VSwitchSelectionPolicy
from ecsprovisioner._internal.core.models.requirements import (
    NodeSelectorRequirement,
    Operator,
    Requirement,
    Requirements,
)
from ecsprovisioner._internal.core.testing.common import get_instance_shape, get_offering

SPOT = CapacityType.SPOT
ON_DEMAND = CapacityType.ON_DEMAND
ARCH_LABEL = "kubernetes.io/arch"
INSTANCE_FAMILY_LABEL = "karpenter.k8s.alibabacloud/instance-family"


def get_requirements(capacity_types: List[CapacityType]) -> Requirements:
    return Requirements(
        [Requirement(CAPACITY_TYPE_LABEL, Operator.IN, [ct.value for ct in capacity_types])]
    )


class TestFilterExoticInstanceShapes:
    def test_drops_metal_and_gpu_shapes(self):
        generic = get_instance_shape(name="ecs.g7.large")
        metal = get_instance_shape(
            name="ecs.ebmg7.32xlarge", labels={INSTANCE_SIZE_LABEL: ["metal"]}
        )
        gpu = get_instance_shape(name="ecs.gn7i-c8g1.2xlarge", nvidia_gpus=1)
        assert filter_exotic_instance_shapes([metal, generic, gpu]) == [generic]

    def test_keeps_exotic_shapes_if_nothing_else_remains(self):
        metal = get_instance_shape(
            name="ecs.ebmg7.32xlarge", labels={INSTANCE_SIZE_LABEL: ["metal"]}
        )
        gpu = get_instance_shape(name="ecs.gn7i-c8g1.2xlarge", nvidia_gpus=1)
        assert filter_exotic_instance_shapes([metal, gpu]) == [metal, gpu]


class TestIsMixedCapacityLaunch:
    def test_mixed(self):
        shapes = [
            get_instance_shape(
                offerings=[get_offering(capacity_type=SPOT), get_offering(capacity_type=ON_DEMAND)]
            )
        ]
        assert is_mixed_capacity_launch(get_requirements([SPOT, ON_DEMAND]), shapes)

    def test_requirements_allow_only_one_capacity_type(self):
        shapes = [
            get_instance_shape(
                offerings=[get_offering(capacity_type=SPOT), get_offering(capacity_type=ON_DEMAND)]
            )
        ]
        assert not is_mixed_capacity_launch(get_requirements([ON_DEMAND]), shapes)

    def test_no_available_spot_offerings(self):
        shapes = [
            get_instance_shape(
                offerings=[
                    get_offering(capacity_type=SPOT, available=False),
                    get_offering(capacity_type=ON_DEMAND),
                ]
            )
        ]
        assert not is_mixed_capacity_launch(get_requirements([SPOT, ON_DEMAND]), shapes)


class TestFilterUnwantedSpot:
    def test_drops_shapes_more_expensive_than_cheapest_on_demand(self):
        s1 = get_instance_shape(
            name="s1",
            offerings=[
                get_offering(capacity_type=ON_DEMAND, price=0.10),
                get_offering(capacity_type=SPOT, price=0.12),
            ],
        )
        s2 = get_instance_shape(
            name="s2",
            offerings=[
                get_offering(capacity_type=ON_DEMAND, price=0.09),
                get_offering(capacity_type=SPOT, price=0.08),
            ],
        )
        requirements = get_requirements([SPOT, ON_DEMAND])
        assert filter_unwanted_spot(requirements, [s1, s2]) == [s2]
        assert filter_instance_shapes(requirements, [s1, s2]) == [s2]

    def test_keeps_shapes_priced_as_cheapest_on_demand(self):
        s1 = get_instance_shape(
            name="s1", offerings=[get_offering(capacity_type=SPOT, price=0.09)]
        )
        s2 = get_instance_shape(
            name="s2", offerings=[get_offering(capacity_type=ON_DEMAND, price=0.09)]
        )
        assert filter_unwanted_spot(get_requirements([SPOT, ON_DEMAND]), [s1, s2]) == [s1, s2]

    def test_drops_shapes_without_available_offerings(self):
        s1 = get_instance_shape(
            name="s1", offerings=[get_offering(capacity_type=SPOT, price=0.01, available=False)]
        )
        s2 = get_instance_shape(
            name="s2", offerings=[get_offering(capacity_type=ON_DEMAND, price=0.09)]
        )
        assert filter_unwanted_spot(get_requirements([SPOT, ON_DEMAND]), [s1, s2]) == [s2]

    def test_only_spot_shapes_not_filtered_without_mixed_launch(self):
        s1 = get_instance_shape(
            name="s1", offerings=[get_offering(capacity_type=SPOT, price=0.5)]
        )
        s2 = get_instance_shape(
            name="s2", offerings=[get_offering(capacity_type=ON_DEMAND, price=0.1)]
        )
        assert filter_instance_shapes(get_requirements([SPOT]), [s1, s2]) == [s1, s2]


class TestOrderByPrice:
    def test_orders_by_cheapest_compatible_offering(self):
        s1 = get_instance_shape(name="s1", offerings=[get_offering(price=0.3)])
        s2 = get_instance_shape(
            name="s2",
            offerings=[
                get_offering(capacity_type=SPOT, price=0.01),
                get_offering(capacity_type=ON_DEMAND, price=0.2),
            ],
        )
        s3 = get_instance_shape(name="s3", offerings=[get_offering(price=0.1)])
        s4 = get_instance_shape(name="s4", offerings=[get_offering(price=0.1)])
        ordered = order_by_price(get_requirements([ON_DEMAND]), [s1, s2, s3, s4])
        assert [s.name for s in ordered] == ["s3", "s4", "s2", "s1"]

    def test_shapes_without_offerings_go_last(self):
        s1 = get_instance_shape(name="s1", offerings=[])
        s2 = get_instance_shape(name="s2", offerings=[get_offering(price=10)])
        ordered = order_by_price(get_requirements([ON_DEMAND]), [s1, s2])
        assert [s.name for s in ordered] == ["s2", "s1"]


class TestTruncateInstanceShapes:
    def test_truncates_to_cheapest(self):
        shapes = [
            get_instance_shape(name=f"ecs.t{i}", offerings=[get_offering(price=100 - i)])
            for i in range(30)
        ]
        truncated = truncate_instance_shapes(get_requirements([ON_DEMAND]), shapes)
        assert len(truncated) == 20
        assert truncated[0].name == "ecs.t29"
        assert truncated[-1].name == "ecs.t10"

    def test_min_values_satisfied(self):
        requirements = Requirements.from_node_selector_requirements(
            [
                NodeSelectorRequirement(
                    key=INSTANCE_FAMILY_LABEL, operator=Operator.EXISTS, min_values=2
                )
            ]
        )
        shapes = [
            get_instance_shape(name="ecs.g7.large", labels={INSTANCE_FAMILY_LABEL: ["ecs.g7"]}),
            get_instance_shape(name="ecs.c7.large", labels={INSTANCE_FAMILY_LABEL: ["ecs.c7"]}),
        ]
        assert len(truncate_instance_shapes(requirements, shapes)) == 2

    def test_min_values_not_satisfied_after_truncation(self):
        requirements = Requirements.from_node_selector_requirements(
            [
                NodeSelectorRequirement(
                    key=INSTANCE_FAMILY_LABEL, operator=Operator.EXISTS, min_values=2
                )
            ]
        )
        shapes = [
            get_instance_shape(
                name="ecs.g7.large",
                labels={INSTANCE_FAMILY_LABEL: ["ecs.g7"]},
                offerings=[get_offering(price=0.1)],
            ),
            get_instance_shape(
                name="ecs.g7.xlarge",
                labels={INSTANCE_FAMILY_LABEL: ["ecs.g7"]},
                offerings=[get_offering(price=0.2)],
            ),
            get_instance_shape(
                name="ecs.c7.large",
                labels={INSTANCE_FAMILY_LABEL: ["ecs.c7"]},
                offerings=[get_offering(price=0.3)],
            ),
        ]
        with pytest.raises(ProvisioningError, match="minValues"):
            truncate_instance_shapes(requirements, shapes, max_items=2)

    def test_min_values_for_instance_types(self):
        requirements = Requirements.from_node_selector_requirements(
            [
                NodeSelectorRequirement(
                    key=INSTANCE_TYPE_LABEL,
                    operator=Operator.IN,
                    values=["ecs.g7.large", "ecs.g7.xlarge"],
                    min_values=2,
                )
            ]
        )
        shapes = [
            get_instance_shape(name="ecs.g7.large"),
            get_instance_shape(name="ecs.c7.large"),
        ]
        assert get_unsatisfied_min_values_key(requirements, shapes) == INSTANCE_TYPE_LABEL


class TestGetCapacityType:
    def test_spot_if_allowed_and_available(self):
        shapes = [
            get_instance_shape(
                offerings=[get_offering(capacity_type=SPOT), get_offering(capacity_type=ON_DEMAND)]
            )
        ]
        assert get_capacity_type(get_requirements([SPOT, ON_DEMAND]), shapes) == SPOT

    def test_on_demand_if_spot_offering_removed(self):
        shapes = [get_instance_shape(offerings=[get_offering(capacity_type=ON_DEMAND)])]
        assert get_capacity_type(get_requirements([SPOT, ON_DEMAND]), shapes) == ON_DEMAND

    def test_on_demand_if_spot_offering_unavailable(self):
        shapes = [
            get_instance_shape(
                offerings=[
                    get_offering(capacity_type=SPOT, available=False),
                    get_offering(capacity_type=ON_DEMAND),
                ]
            )
        ]
        assert get_capacity_type(get_requirements([SPOT, ON_DEMAND]), shapes) == ON_DEMAND

    def test_on_demand_if_spot_not_allowed(self):
        shapes = [get_instance_shape(offerings=[get_offering(capacity_type=SPOT)])]
        assert get_capacity_type(get_requirements([ON_DEMAND]), shapes) == ON_DEMAND

    def test_spot_if_capacity_type_unconstrained(self):
        shapes = [get_instance_shape(offerings=[get_offering(capacity_type=SPOT)])]
        assert get_capacity_type(Requirements(), shapes) == SPOT


class TestCheckOnDemandFallback:
    def test_warns_with_few_shapes(self):
        shapes = [
            get_instance_shape(name=f"ecs.t{i}", offerings=[get_offering(capacity_type=ON_DEMAND)])
            for i in range(3)
        ]
        warning = check_on_demand_fallback(get_requirements([SPOT, ON_DEMAND]), shapes)
        assert warning is not None
        assert "only has 3 instance type options" in warning

    def test_no_warning_with_enough_shapes(self):
        shapes = [
            get_instance_shape(name=f"ecs.t{i}", offerings=[get_offering(capacity_type=ON_DEMAND)])
            for i in range(5)
        ]
        assert check_on_demand_fallback(get_requirements([SPOT, ON_DEMAND]), shapes) is None

    def test_no_warning_if_spot_not_allowed(self):
        shapes = [get_instance_shape(offerings=[get_offering(capacity_type=ON_DEMAND)])]
        assert check_on_demand_fallback(get_requirements([ON_DEMAND]), shapes) is None

    def test_no_warning_for_spot(self):
        shapes = [get_instance_shape(offerings=[get_offering(capacity_type=SPOT)])]
        assert check_on_demand_fallback(get_requirements([SPOT, ON_DEMAND]), shapes) is None


class TestMapImagesToInstanceShapes:
    def test_maps_first_compatible_image(self):
        amd64 = get_instance_shape(name="ecs.g7.large", labels={ARCH_LABEL: ["amd64"]})
        arm64 = get_instance_shape(name="ecs.g8y.large", labels={ARCH_LABEL: ["arm64"]})
        unknown = get_instance_shape(name="ecs.x.large", labels={ARCH_LABEL: ["riscv"]})
        images = [
            Image(
                id="m-arm64",
                requirements=[
                    NodeSelectorRequirement(key=ARCH_LABEL, operator=Operator.IN, values=["arm64"])
                ],
            ),
            Image(
                id="m-amd64",
                requirements=[
                    NodeSelectorRequirement(key=ARCH_LABEL, operator=Operator.IN, values=["amd64"])
                ],
            ),
            Image(
                id="m-amd64-old",
                requirements=[
                    NodeSelectorRequirement(key=ARCH_LABEL, operator=Operator.IN, values=["amd64"])
                ],
            ),
        ]
        assert map_images_to_instance_shapes([amd64, arm64, unknown], images) == {
            "ecs.g7.large": "m-amd64",
            "ecs.g8y.large": "m-arm64",
        }


class TestChooseVSwitchId:
    ZONAL_VSWITCHES = {
        "cn-hangzhou-a": VSwitch(id="vsw-a", zone="cn-hangzhou-a"),
        "cn-hangzhou-b": VSwitch(id="vsw-b", zone="cn-hangzhou-b"),
        "cn-hangzhou-c": VSwitch(id="vsw-c", zone="cn-hangzhou-c"),
    }

    def test_cheapest_zone_for_spot(self):
        shape = get_instance_shape(
            offerings=[
                get_offering(capacity_type=SPOT, zone="cn-hangzhou-a", price=0.3),
                get_offering(capacity_type=SPOT, zone="cn-hangzhou-b", price=0.1),
                get_offering(capacity_type=ON_DEMAND, zone="cn-hangzhou-c", price=0.01),
            ]
        )
        vswitch_id = choose_vswitch_id(
            instance_shape=shape,
            zonal_vswitches=self.ZONAL_VSWITCHES,
            requirements=get_requirements([SPOT]),
            capacity_type=SPOT,
            vswitch_selection_policy=VSwitchSelectionPolicy.CHEAPEST,
            rng=random.Random(0),
        )
        assert vswitch_id == "vsw-b"

    def test_tie_keeps_first_zone(self):
        shape = get_instance_shape(
            offerings=[
                get_offering(capacity_type=SPOT, zone="cn-hangzhou-c", price=0.1),
                get_offering(capacity_type=SPOT, zone="cn-hangzhou-a", price=0.1),
            ]
        )
        for seed in range(10):
            vswitch_id = choose_vswitch_id(
                instance_shape=shape,
                zonal_vswitches=self.ZONAL_VSWITCHES,
                requirements=get_requirements([SPOT]),
                capacity_type=SPOT,
                vswitch_selection_policy=VSwitchSelectionPolicy.CHEAPEST,
                rng=random.Random(seed),
            )
            assert vswitch_id == "vsw-c"

    def test_skips_zones_without_vswitch_and_unavailable_offerings(self):
        shape = get_instance_shape(
            offerings=[
                get_offering(capacity_type=SPOT, zone="cn-hangzhou-z", price=0.01),
                get_offering(
                    capacity_type=SPOT, zone="cn-hangzhou-a", price=0.02, available=False
                ),
                get_offering(capacity_type=SPOT, zone="cn-hangzhou-b", price=0.5),
            ]
        )
        vswitch_id = choose_vswitch_id(
            instance_shape=shape,
            zonal_vswitches=self.ZONAL_VSWITCHES,
            requirements=get_requirements([SPOT]),
            capacity_type=SPOT,
            vswitch_selection_policy=VSwitchSelectionPolicy.CHEAPEST,
            rng=random.Random(0),
        )
        assert vswitch_id == "vsw-b"

    def test_no_zone(self):
        shape = get_instance_shape(
            offerings=[get_offering(capacity_type=SPOT, zone="cn-hangzhou-z", price=0.01)]
        )
        vswitch_id = choose_vswitch_id(
            instance_shape=shape,
            zonal_vswitches=self.ZONAL_VSWITCHES,
            requirements=get_requirements([SPOT]),
            capacity_type=SPOT,
            vswitch_selection_policy=VSwitchSelectionPolicy.CHEAPEST,
            rng=random.Random(0),
        )
        assert vswitch_id is None

    @pytest.mark.parametrize(
        ("capacity_type", "policy"),
        [
            (ON_DEMAND, VSwitchSelectionPolicy.CHEAPEST),
            (SPOT, VSwitchSelectionPolicy.BALANCED),
        ],
    )
    def test_random_zone(self, capacity_type: CapacityType, policy: VSwitchSelectionPolicy):
        shape = get_instance_shape(
            offerings=[get_offering(capacity_type=capacity_type, zone="cn-hangzhou-a")]
        )
        chosen = set()
        for seed in range(50):
            vswitch_id = choose_vswitch_id(
                instance_shape=shape,
                zonal_vswitches=self.ZONAL_VSWITCHES,
                requirements=get_requirements([capacity_type]),
                capacity_type=capacity_type,
                vswitch_selection_policy=policy,
                rng=random.Random(seed),
            )
            chosen.add(vswitch_id)
        assert chosen == {"vsw-a", "vsw-b", "vsw-c"}

    def test_random_zone_is_deterministic_with_seed(self):
        shape = get_instance_shape()
        vswitch_ids = [
            choose_vswitch_id(
                instance_shape=shape,
                zonal_vswitches=self.ZONAL_VSWITCHES,
                requirements=get_requirements([ON_DEMAND]),
                capacity_type=ON_DEMAND,
                vswitch_selection_policy=VSwitchSelectionPolicy.CHEAPEST,
                rng=random.Random(42),
            )
            for _ in range(3)
        ]
        assert len(set(vswitch_ids)) == 1
