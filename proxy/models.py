"""Result and endpoint models for the daemon API proxy."""
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

Number = Union[int, float]


class NodeEndpoint(BaseModel):
    """A daemon endpoint, or the pseudo-node an aggregate was addressed to."""
    model_config = ConfigDict(frozen=True)

    host: str
    port: Optional[int] = None

    def __str__(self) -> str:
        if self.port is None:
            return self.host
        return f"{self.host}:{self.port}"


class PoolEndpoint(BaseModel):
    """A mining pool stats endpoint."""
    model_config = ConfigDict(frozen=True)

    name: str
    url: str

    def __str__(self) -> str:
        return self.name


class ProxyResult(BaseModel):
    """
    Base for every result the proxy hands back.

    Fields declared here and on subclasses serialize in camelCase. Fields that
    come straight from a daemon response are kept as extras under their
    original names.
    """
    model_config = ConfigDict(extra="allow", alias_generator=to_camel, populate_by_name=True)

    cached: bool = False
    node: Optional[NodeEndpoint] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], node: NodeEndpoint, **fields: Any) -> "ProxyResult":
        data = dict(payload)
        data.update(fields)
        data["node"] = node
        data["cached"] = False
        return cls.model_validate(data)

    def as_cached(self) -> "ProxyResult":
        return self.model_copy(update={"cached": True}, deep=True)

    def to_response(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class InfoResult(ProxyResult):
    difficulty: Optional[int] = None
    height: Optional[int] = None
    global_hash_rate: Optional[int] = None


class HeightResult(ProxyResult):
    height: Optional[int] = None


class FeeResult(ProxyResult):
    address: str = ""
    amount: int = 0


class PeersResult(ProxyResult):
    peers: List[str] = []


class RpcResult(ProxyResult):
    """Object result of a JSON-RPC handler; every daemon field is an extra."""


class AggregateResult(ProxyResult):
    """
    Reduction of one fan-out round.

    When no node produced a usable value every statistic is None,
    ``confidence`` is 0.0 and ``error`` says why.
    """
    max: Optional[Number] = None
    min: Optional[Number] = None
    average: Optional[int] = None
    median: Optional[Number] = None
    sample_count: int = 0
    responded_count: int = 0
    winning_value: Optional[Number] = None
    confidence: float = 0.0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.sample_count > 0


class ErrorResult(ProxyResult):
    error: str
