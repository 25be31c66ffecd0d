"""
Outbound request catalogue -- the records members publish for each other.

Each kind is a list in the member's data record, except ``econ`` which is a
single object. Field names on the wire are camelCase.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class RequestKind(str, Enum):
    """Keys of the member data record."""

    RESOURCE = "resource"
    DEFENSE = "defense"
    ATTACK = "attack"
    PLAYER = "player"
    WORK = "work"
    FUNNEL = "funnel"
    ECON = "econ"
    ROOM = "room"


class FunnelGoal(int, Enum):
    """What funnelled energy will be spent on."""

    GCL = 0
    RCL7 = 1
    RCL8 = 2


class _Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Wire form: camelCase keys, unset optionals omitted."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# 0-1, 1 is highest consideration
Priority = Annotated[float, Field(ge=0, le=1)]


class ResourceRequest(_Payload):
    priority: Priority
    room_name: str
    resource_type: str
    amount: int = Field(gt=0)
    terminal: Optional[bool] = Field(
        default=None, description="False asks allies to haul instead of send"
    )


class DefenseRequest(_Payload):
    priority: Priority
    room_name: str


class AttackRequest(_Payload):
    priority: Priority
    room_name: str


class PlayerRequest(_Payload):
    """Shared opinion about another player."""

    player_name: str
    hate: float = Field(ge=0, le=1)
    last_attacked_by: Optional[int] = None


class WorkRequest(_Payload):
    room_name: str
    priority: Priority
    work_type: Literal["build", "repair"]


class FunnelRequest(_Payload):
    max_amount: int = Field(gt=0)
    goal_type: FunnelGoal
    room_name: Optional[str] = None


class EconInfo(_Payload):
    """How the member is doing economically."""

    credits: float = 0
    sharable_energy: int = 0
    energy_income: Optional[float] = None
    mineral_nodes: Optional[dict[str, int]] = None


class RoomIntel(_Payload):
    """Scouting data about a hostile owned room."""

    room_name: str
    player_name: str
    last_scout: int
    rcl: int
    energy: int
    towers: int
    avg_rampart_hits: int = Field(alias="avgRamprtHits")
    terminal: bool


AnyPayload = Union[
    ResourceRequest,
    DefenseRequest,
    AttackRequest,
    PlayerRequest,
    WorkRequest,
    FunnelRequest,
    EconInfo,
    RoomIntel,
]

REQUEST_MODELS: dict[RequestKind, type[_Payload]] = {
    RequestKind.RESOURCE: ResourceRequest,
    RequestKind.DEFENSE: DefenseRequest,
    RequestKind.ATTACK: AttackRequest,
    RequestKind.PLAYER: PlayerRequest,
    RequestKind.WORK: WorkRequest,
    RequestKind.FUNNEL: FunnelRequest,
    RequestKind.ECON: EconInfo,
    RequestKind.ROOM: RoomIntel,
}


def build_payload(
    kind: RequestKind,
    request: Union[_Payload, dict[str, Any], None] = None,
    **fields: Any,
) -> dict[str, Any]:
    """Validate a request of ``kind`` and return its wire form.

    Args:
        kind: Request kind.
        request: A model instance or a dict (camelCase or snake_case keys).
        **fields: Fields given as keyword arguments instead.

    Raises:
        pydantic.ValidationError: If the request does not fit the kind.
    """
    model = REQUEST_MODELS[RequestKind(kind)]
    if isinstance(request, _Payload):
        return request.to_wire()
    data = dict(request or {})
    data.update(fields)
    return model.model_validate(data).to_wire()
