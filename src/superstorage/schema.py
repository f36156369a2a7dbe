"""
Schema engine -- composable validators for stored values.

A schema node parses untyped input (usually fresh out of json.loads)
into a value of its semantic type, or raises ValidationError naming
the violated constraint. Nodes are frozen pydantic models: the
modifiers required(), min() and max() return a new node and never
touch the one they were called on, so a schema can be shared freely.

The five node kinds form a closed, discriminated union (SchemaNode)
keyed on ``kind``. That makes schemas serialisable as well, so they
can live in YAML/JSON files next to the data they guard.

Absent input (None) is not an error unless the node is required:
strings default to "", numbers to 0, booleans to False, arrays to []
and objects to {}. Validation never coerces present values.

Usage:
    user = s.object({"name": s.string().required(), "age": s.number().min(0)})
    user.parse({"name": "Jane", "age": 25})    # {"name": "Jane", "age": 25}
    user.parse({"age": 25})                    # ValidationError: name: Required string missing

Schema files:
    kind: object
    shape:
      name: {kind: string, required: true, min: 1}
      tags: {kind: array, item: string}
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from pathlib import Path
from typing import Annotated, Any, Literal, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from .errors import ValidationError

Bound = Optional[Union[int, float]]


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------

class _Node(BaseModel):
    """Fields and the required() modifier shared by every node kind."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    is_required: bool = Field(default=False, alias="required")

    def required(self):
        """Return a copy of this node that rejects absent input."""
        return self.model_copy(update={"is_required": True})


class _BoundedNode(_Node):
    """Nodes that support inclusive min/max bounds."""

    min_value: Bound = Field(default=None, alias="min")
    max_value: Bound = Field(default=None, alias="max")

    def min(self, bound: Union[int, float]):
        """Return a copy with an inclusive lower bound."""
        return self.model_copy(update={"min_value": bound})

    def max(self, bound: Union[int, float]):
        """Return a copy with an inclusive upper bound."""
        return self.model_copy(update={"max_value": bound})


class StringSchema(_BoundedNode):
    """Text; bounds apply to the length."""

    kind: Literal["string"] = "string"

    @property
    def python_type(self) -> type:
        return str

    def parse(self, value: Any) -> str:
        return _parse_string(self, value)


class NumberSchema(_BoundedNode):
    """int or float (bool excluded); bounds apply to the value."""

    kind: Literal["number"] = "number"

    @property
    def python_type(self) -> tuple:
        return (int, float)

    def parse(self, value: Any) -> Union[int, float]:
        return _parse_number(self, value)


class BooleanSchema(_Node):
    """True or False."""

    kind: Literal["boolean"] = "boolean"

    @property
    def python_type(self) -> type:
        return bool

    def parse(self, value: Any) -> bool:
        return _parse_boolean(self, value)


class ArraySchema(_Node):
    """An ordered sequence whose every element matches ``item``."""

    kind: Literal["array"] = "array"
    item: SchemaNode

    @property
    def python_type(self) -> type:
        return list

    def parse(self, value: Any) -> list:
        return _parse_array(self, value)


class ObjectSchema(_Node):
    """A mapping with a fixed set of named fields.

    Keys not declared in ``shape`` are dropped from the result.
    """

    kind: Literal["object"] = "object"
    shape: dict[str, SchemaNode] = Field(default_factory=dict)

    @property
    def python_type(self) -> type:
        return dict

    def parse(self, value: Any) -> dict[str, Any]:
        return _parse_object(self, value)


SchemaNode = Annotated[
    Union[StringSchema, NumberSchema, BooleanSchema, ArraySchema, ObjectSchema],
    Field(discriminator="kind"),
]

ArraySchema.model_rebuild()
ObjectSchema.model_rebuild()

_NODE_ADAPTER: TypeAdapter = TypeAdapter(SchemaNode)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def parse(node: SchemaNode, value: Any) -> Any:
    """Validate value against node.

    Args:
        node: Any schema node.
        value: Untyped input; None means absent.

    Returns:
        The validated value (a new list/dict for containers).

    Raises:
        ValidationError: If value violates the node's constraints.
        TypeError: If node is not a schema node.
    """
    if isinstance(node, StringSchema):
        return _parse_string(node, value)
    if isinstance(node, NumberSchema):
        return _parse_number(node, value)
    if isinstance(node, BooleanSchema):
        return _parse_boolean(node, value)
    if isinstance(node, ArraySchema):
        return _parse_array(node, value)
    if isinstance(node, ObjectSchema):
        return _parse_object(node, value)
    raise TypeError(f"Not a schema node: {node!r}")


def _parse_string(node: StringSchema, value: Any) -> str:
    if value is None:
        if node.is_required:
            raise ValidationError("Required string missing", "required")
        return ""
    if not isinstance(value, str):
        raise ValidationError("Not a string", "type", value)
    if node.min_value is not None and len(value) < node.min_value:
        raise ValidationError(
            f"String is shorter than min length {node.min_value}", "min", value
        )
    if node.max_value is not None and len(value) > node.max_value:
        raise ValidationError(
            f"String is longer than max length {node.max_value}", "max", value
        )
    return value


def _parse_number(node: NumberSchema, value: Any) -> Union[int, float]:
    if value is None:
        if node.is_required:
            raise ValidationError("Required number missing", "required")
        return 0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError("Not a number", "type", value)
    if isinstance(value, float) and not math.isfinite(value):
        raise ValidationError("Number is not finite", "finite", value)
    if node.min_value is not None and value < node.min_value:
        raise ValidationError(f"Number is less than min {node.min_value}", "min", value)
    if node.max_value is not None and value > node.max_value:
        raise ValidationError(f"Number is greater than max {node.max_value}", "max", value)
    return value


def _parse_boolean(node: BooleanSchema, value: Any) -> bool:
    if value is None:
        if node.is_required:
            raise ValidationError("Required boolean missing", "required")
        return False
    if not isinstance(value, bool):
        raise ValidationError("Not a boolean", "type", value)
    return value


def _parse_array(node: ArraySchema, value: Any) -> list:
    if value is None:
        if node.is_required:
            raise ValidationError("Required array missing", "required")
        return []
    if not isinstance(value, (list, tuple)):
        raise ValidationError("Not an array", "type", value)

    result = []
    for index, element in enumerate(value):
        try:
            result.append(parse(node.item, element))
        except ValidationError as exc:
            raise exc.at(index) from exc
    return result


def _parse_object(node: ObjectSchema, value: Any) -> dict[str, Any]:
    if value is None:
        if node.is_required:
            raise ValidationError("Required object missing", "required")
        return {}
    if not isinstance(value, Mapping):
        raise ValidationError("Not an object", "type", value)

    result: dict[str, Any] = {}
    for name, field_node in node.shape.items():
        try:
            result[name] = parse(field_node, value.get(name))
        except ValidationError as exc:
            raise exc.at(name) from exc
    return result


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

class SchemaBuilder:
    """Factory namespace for schema nodes (exported as ``s``)."""

    @staticmethod
    def string() -> StringSchema:
        return StringSchema()

    @staticmethod
    def number() -> NumberSchema:
        return NumberSchema()

    @staticmethod
    def boolean() -> BooleanSchema:
        return BooleanSchema()

    @staticmethod
    def array(item: SchemaNode) -> ArraySchema:
        return ArraySchema(item=item)

    @staticmethod
    def object(shape: Mapping[str, SchemaNode]) -> ObjectSchema:
        return ObjectSchema(shape=dict(shape))


s = SchemaBuilder()


# ---------------------------------------------------------------------------
# Serialised schemas
# ---------------------------------------------------------------------------

def _expand_shorthand(data: Any) -> Any:
    """Turn bare kind names ("string") into {"kind": "string"}, recursively."""
    if isinstance(data, str):
        return {"kind": data}
    if not isinstance(data, Mapping):
        return data

    expanded = dict(data)
    if "item" in expanded:
        expanded["item"] = _expand_shorthand(expanded["item"])
    if isinstance(expanded.get("shape"), Mapping):
        expanded["shape"] = {
            name: _expand_shorthand(sub) for name, sub in expanded["shape"].items()
        }
    return expanded


def schema_from_dict(data: Any) -> SchemaNode:
    """Build a schema node from its dict (or shorthand string) form.

    Args:
        data: Output of ``node.model_dump(by_alias=True)``, or a hand-written
            equivalent where any node may be abbreviated to its kind name.

    Returns:
        The schema node.

    Raises:
        pydantic.ValidationError: If data does not describe a schema.
    """
    return _NODE_ADAPTER.validate_python(_expand_shorthand(data))


def schema_to_dict(node: SchemaNode) -> dict[str, Any]:
    """Serialise a schema node to plain data (inverse of schema_from_dict)."""
    return node.model_dump(by_alias=True, exclude_none=True)


def load_schema(path: Path) -> SchemaNode:
    """Load a schema definition from a YAML or JSON file.

    Args:
        path: File to read.

    Returns:
        The schema node described by the file.
    """
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    return schema_from_dict(data)


def infer_schema(value: Any) -> SchemaNode:
    """Build the loosest schema a sample value satisfies.

    Arrays take their item schema from the first element (string for an
    empty array). Used by the CLI when no schema file is given.
    """
    if isinstance(value, bool):
        return BooleanSchema()
    if isinstance(value, (int, float)):
        return NumberSchema()
    if isinstance(value, (list, tuple)):
        return ArraySchema(item=infer_schema(value[0]) if value else StringSchema())
    if isinstance(value, Mapping):
        return ObjectSchema(shape={name: infer_schema(sub) for name, sub in value.items()})
    return StringSchema()
