from enum import Enum
from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional

from ecsprovisioner._internal.core.models.common import FrozenCoreModel


class Operator(str, Enum):
    IN = "In"
    NOT_IN = "NotIn"
    EXISTS = "Exists"
    DOES_NOT_EXIST = "DoesNotExist"


class NodeSelectorRequirement(FrozenCoreModel):
    key: str
    operator: Operator
    values: List[str] = []
    min_values: Optional[int] = None


class Requirement:
    """
    The set of values allowed for a label key.
    `In` and `DoesNotExist` are stored as an explicit set,
    `NotIn` and `Exists` as the complement of an explicit set.
    """

    def __init__(
        self,
        key: str,
        operator: Operator,
        values: Iterable[str] = (),
        min_values: Optional[int] = None,
    ):
        self.key = key
        self.min_values = min_values
        if operator == Operator.IN:
            self.complement = False
            self.values: FrozenSet[str] = frozenset(values)
        elif operator == Operator.NOT_IN:
            self.complement = True
            self.values = frozenset(values)
        elif operator == Operator.EXISTS:
            self.complement = True
            self.values = frozenset()
        elif operator == Operator.DOES_NOT_EXIST:
            self.complement = False
            self.values = frozenset()
        else:
            raise ValueError(f"Unsupported operator {operator}")

    @property
    def operator(self) -> Operator:
        if self.complement:
            return Operator.NOT_IN if self.values else Operator.EXISTS
        return Operator.IN if self.values else Operator.DOES_NOT_EXIST

    def has(self, value: str) -> bool:
        if self.complement:
            return value not in self.values
        return value in self.values

    def any(self) -> Optional[str]:
        """
        Returns a value allowed by the requirement or `None` if the allowed values are unbounded.
        """
        if self.complement or not self.values:
            return None
        return min(self.values)

    def intersects(self, other: "Requirement") -> bool:
        if self.complement and other.complement:
            return True
        if self.complement:
            return len(other.values - self.values) > 0
        if other.complement:
            return len(self.values - other.values) > 0
        return len(self.values & other.values) > 0

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Requirement):
            return NotImplemented
        return (
            self.key == other.key
            and self.complement == other.complement
            and self.values == other.values
            and self.min_values == other.min_values
        )

    def __repr__(self) -> str:
        return f"Requirement({self.key} {self.operator.value} {sorted(self.values)})"


class Requirements:
    """
    Label requirements keyed by label key.
    Keys that are not defined on one of the sides are considered compatible.
    """

    def __init__(self, requirements: Iterable[Requirement] = ()):
        self._requirements: Dict[str, Requirement] = {}
        for requirement in requirements:
            self._requirements[requirement.key] = requirement

    @classmethod
    def from_node_selector_requirements(
        cls, requirements: Iterable[NodeSelectorRequirement]
    ) -> "Requirements":
        return cls(
            Requirement(r.key, r.operator, r.values, min_values=r.min_values)
            for r in requirements
        )

    @classmethod
    def from_labels(cls, labels: Dict[str, str]) -> "Requirements":
        return cls(Requirement(k, Operator.IN, [v]) for k, v in labels.items())

    def get(self, key: str) -> Requirement:
        requirement = self._requirements.get(key)
        if requirement is None:
            return Requirement(key, Operator.EXISTS)
        return requirement

    def with_requirement(self, requirement: Requirement) -> "Requirements":
        """
        Returns a copy with `requirement` replacing the requirement for the same key.
        """
        return Requirements([*self._requirements.values(), requirement])

    def has_min_values(self) -> bool:
        return any(r.min_values is not None for r in self._requirements.values())

    def compatible(self, other: "Requirements") -> bool:
        for key, requirement in self._requirements.items():
            if key not in other:
                continue
            if not requirement.intersects(other.get(key)):
                return False
        return True

    def keys(self) -> List[str]:
        return list(self._requirements)

    def __contains__(self, key: object) -> bool:
        return key in self._requirements

    def __iter__(self) -> Iterator[Requirement]:
        return iter(self._requirements.values())

    def __len__(self) -> int:
        return len(self._requirements)

    def __repr__(self) -> str:
        return f"Requirements({list(self._requirements.values())})"


class NodeRequest(FrozenCoreModel):
    """
    The desired node: its labels and the scheduling requirements it must satisfy.
    """

    name: str
    labels: Dict[str, str] = {}
    requirements: List[NodeSelectorRequirement] = []

    def get_requirements(self) -> Requirements:
        return Requirements.from_node_selector_requirements(self.requirements)
