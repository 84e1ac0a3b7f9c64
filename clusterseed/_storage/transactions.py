"""Committed transaction format shared by the replicated log and the graph store."""

from typing import Dict, List, Literal, Optional, Union
from pydantic import BaseModel, Field, model_validator

PropertyValue = Union[bool, int, float, str]

# Joins start and end node ids in relationship keys, so node ids may not contain it
RELATIONSHIP_SEPARATOR = "->"


class Operation(BaseModel):
    """Single graph mutation inside a transaction."""

    kind: Literal["create_node", "set_property", "delete_node", "create_relationship"]
    node_id: Optional[str] = Field(None, description="Target node (or relationship start)")
    end_node_id: Optional[str] = Field(None, description="Relationship end node")
    rel_type: Optional[str] = None
    key: Optional[str] = None
    value: Optional[PropertyValue] = None
    properties: Dict[str, PropertyValue] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_fields(self) -> "Operation":
        if not self.node_id:
            raise ValueError(f"{self.kind} requires node_id")
        for node_id in (self.node_id, self.end_node_id):
            if node_id and RELATIONSHIP_SEPARATOR in node_id:
                raise ValueError(f"Node id {node_id!r} must not contain {RELATIONSHIP_SEPARATOR!r}")
        if self.kind == "create_relationship" and not (self.end_node_id and self.rel_type):
            raise ValueError("create_relationship requires end_node_id and rel_type")
        if self.kind == "set_property" and (not self.key or self.value is None):
            raise ValueError("set_property requires key and value")
        return self

    @classmethod
    def create_node(cls, node_id: str, **properties: PropertyValue) -> "Operation":
        return cls(kind="create_node", node_id=node_id, properties=properties)

    @classmethod
    def set_property(cls, node_id: str, key: str, value: PropertyValue) -> "Operation":
        return cls(kind="set_property", node_id=node_id, key=key, value=value)

    @classmethod
    def delete_node(cls, node_id: str) -> "Operation":
        return cls(kind="delete_node", node_id=node_id)

    @classmethod
    def create_relationship(
        cls, start: str, end: str, rel_type: str, **properties: PropertyValue
    ) -> "Operation":
        return cls(
            kind="create_relationship",
            node_id=start,
            end_node_id=end,
            rel_type=rel_type,
            properties=properties,
        )


class LogEntry(BaseModel):
    """Committed transaction at a position of the replicated log."""

    index: int = Field(..., ge=1)
    operations: List[Operation]
