"""RebootNode resource model.

These Pydantic models mirror the RebootNode custom resource stored in the
cluster. Field names are snake_case in Python and camelCase on the wire
(``to_resource`` / ``from_resource``).

Conditions are held in an ordered map keyed by condition type, so there is
never more than one condition of a type. Setting an existing type replaces
it in place; a new type is appended.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SerializerFunctionWrapHandler,
    field_serializer,
    field_validator,
    model_serializer,
    model_validator,
)
from pydantic.alias_generators import to_camel


API_GROUP = "janitor.dgxc.nvidia.com"
API_VERSION = f"{API_GROUP}/v1alpha1"
KIND = "RebootNode"


def utcnow() -> datetime:
    """Current UTC time at the second precision the API server stores."""
    return datetime.now(timezone.utc).replace(microsecond=0)


class ConditionType(str, Enum):
    """RebootNode condition types."""
    SIGNAL_SENT = "SignalSent"
    NODE_READY = "NodeReady"
    MANUAL_MODE = "ManualMode"


_MANAGED_CONDITION_TYPES = frozenset(t.value for t in ConditionType)


class ConditionStatus(str, Enum):
    """Tri-state condition value."""
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Condition(_WireModel):
    """A typed, timestamped status flag."""

    model_config = ConfigDict(frozen=True)

    type: ConditionType
    status: ConditionStatus
    reason: str = ""
    message: str = ""
    last_transition_time: datetime = Field(default_factory=utcnow)


class ObjectMeta(_WireModel):
    """Subset of Kubernetes object metadata the controller reads.

    Unknown metadata fields (uid, generation, ...) are kept so a full
    object update round-trips them unchanged.
    """

    model_config = ConfigDict(extra="allow")

    name: str
    resource_version: str | None = None
    finalizers: list[str] = Field(default_factory=list)
    deletion_timestamp: datetime | None = None


class RebootNodeSpec(_WireModel):
    """Desired state: which node to reboot. Immutable after creation."""

    model_config = ConfigDict(frozen=True)

    node_name: str


class RebootNodeStatus(_WireModel):
    """Observed state of a reboot, owned by the controller.

    Conditions of types the controller does not manage (for example ones
    an outside actor adds in manual mode) are kept aside in
    ``foreign_conditions`` and written back unchanged after the managed ones.
    """

    conditions: dict[ConditionType, Condition] = Field(default_factory=dict)
    foreign_conditions: list[dict[str, Any]] = Field(default_factory=list, exclude=True)
    start_time: datetime | None = None
    completion_time: datetime | None = None
    retry_count: int = Field(default=0, ge=0)
    consecutive_failures: int = Field(default=0, ge=0)

    @model_validator(mode="before")
    @classmethod
    def _split_foreign_conditions(cls, data: Any) -> Any:
        if not isinstance(data, dict) or not isinstance(data.get("conditions"), (list, tuple)):
            return data
        known: list[Any] = []
        foreign: list[dict[str, Any]] = []
        for item in data["conditions"]:
            if isinstance(item, dict) and item.get("type") not in _MANAGED_CONDITION_TYPES:
                foreign.append(item)
            else:
                known.append(item)
        if not foreign:
            return data
        key = "foreign_conditions" if "foreign_conditions" in data else "foreignConditions"
        return {**data, "conditions": known, key: [*data.get(key, []), *foreign]}

    @field_validator("conditions", mode="before")
    @classmethod
    def _conditions_from_list(cls, value: Any) -> Any:
        # The wire form is a list; later entries of the same type win.
        if value is None:
            return {}
        if isinstance(value, (list, tuple)):
            conditions: dict[ConditionType, Condition] = {}
            for item in value:
                condition = item if isinstance(item, Condition) else Condition.model_validate(item)
                conditions[condition.type] = condition
            return conditions
        return value

    @field_serializer("conditions")
    def _conditions_to_list(self, conditions: dict[ConditionType, Condition]) -> list[Condition]:
        return list(conditions.values())

    @model_serializer(mode="wrap")
    def _with_foreign_conditions(self, handler: SerializerFunctionWrapHandler) -> dict[str, Any]:
        data = handler(self)
        if self.foreign_conditions and "conditions" in data:
            data["conditions"] = [*data["conditions"], *self.foreign_conditions]
        return data

    def snapshot(self) -> RebootNodeStatus:
        """Detached copy used to detect whether a reconcile changed anything."""
        return self.model_copy(deep=True)


class RebootNode(_WireModel):
    """A request to reboot one cluster node."""

    api_version: str = API_VERSION
    kind: str = KIND
    metadata: ObjectMeta
    spec: RebootNodeSpec
    status: RebootNodeStatus = Field(default_factory=RebootNodeStatus)

    @classmethod
    def new(cls, name: str, node_name: str) -> RebootNode:
        """Build a freshly created record with only the node name set."""
        return cls(metadata=ObjectMeta(name=name), spec=RebootNodeSpec(node_name=node_name))

    @classmethod
    def from_resource(cls, obj: dict[str, Any]) -> RebootNode:
        return cls.model_validate(obj)

    def to_resource(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def node_name(self) -> str:
        return self.spec.node_name

    @property
    def deletion_requested(self) -> bool:
        return self.metadata.deletion_timestamp is not None

    # ------------------------------------------------------------------
    # Condition helpers
    # ------------------------------------------------------------------

    def get_condition(self, condition_type: ConditionType | str) -> Condition | None:
        return self.status.conditions.get(ConditionType(condition_type))

    def set_condition(self, condition: Condition) -> None:
        """Upsert a condition by type, keeping the position of an existing one."""
        self.status.conditions[condition.type] = condition

    def has_condition(self, condition_type: ConditionType, status: ConditionStatus | None = None) -> bool:
        condition = self.get_condition(condition_type)
        if condition is None:
            return False
        return status is None or condition.status == status

    def set_initial_conditions(self, now: datetime | None = None) -> None:
        """Add Unknown SignalSent/NodeReady conditions if they are missing."""
        now = now or utcnow()
        for condition_type in (ConditionType.SIGNAL_SENT, ConditionType.NODE_READY):
            if condition_type not in self.status.conditions:
                self.set_condition(Condition(
                    type=condition_type,
                    status=ConditionStatus.UNKNOWN,
                    reason="Initializing",
                    message="Initializing reboot status",
                    last_transition_time=now,
                ))

    def set_start_time(self, now: datetime | None = None) -> None:
        if self.status.start_time is None:
            self.status.start_time = now or utcnow()

    def set_completion_time(self, now: datetime | None = None) -> None:
        if self.status.completion_time is None:
            self.status.completion_time = now or utcnow()

    def is_reboot_in_progress(self) -> bool:
        """Signal was sent and the node has not yet been confirmed ready."""
        return (
            self.has_condition(ConditionType.SIGNAL_SENT, ConditionStatus.TRUE)
            and not self.has_condition(ConditionType.NODE_READY, ConditionStatus.TRUE)
        )

    def get_csp_req_ref(self) -> str:
        """Opaque CSP reference recorded when the reboot signal was sent."""
        condition = self.get_condition(ConditionType.SIGNAL_SENT)
        if condition is None or condition.status != ConditionStatus.TRUE:
            return ""
        return condition.message

    # ------------------------------------------------------------------
    # Finalizer helpers
    # ------------------------------------------------------------------

    def has_finalizer(self, finalizer: str) -> bool:
        return finalizer in self.metadata.finalizers

    def add_finalizer(self, finalizer: str) -> bool:
        if finalizer in self.metadata.finalizers:
            return False
        self.metadata.finalizers.append(finalizer)
        return True

    def remove_finalizer(self, finalizer: str) -> bool:
        if finalizer not in self.metadata.finalizers:
            return False
        self.metadata.finalizers = [f for f in self.metadata.finalizers if f != finalizer]
        return True


@dataclass(frozen=True)
class Node:
    """Read-only view of a cluster node as reported by the API server."""
    name: str
    ready: bool = False
    provider_id: str = ""
    labels: dict[str, str] = field(default_factory=dict)
