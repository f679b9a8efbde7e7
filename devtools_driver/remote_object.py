"""Typed view of ``Runtime.RemoteObject`` payloads."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any


class RemoteKind(str, Enum):
    NULL = "null"
    UNDEFINED = "undefined"
    BOOLEAN = "boolean"
    NUMBER = "number"
    STRING = "string"
    ARRAY = "array"
    OBJECT = "object"
    ERROR = "error"
    OTHER = "other"


_UNSERIALIZABLE = {
    "Infinity": math.inf,
    "-Infinity": -math.inf,
    "NaN": math.nan,
    "-0": -0.0,
}


def parse_unserializable(raw: str) -> Any:
    """Map CDP's ``unserializableValue`` strings onto Python numbers."""
    if raw in _UNSERIALIZABLE:
        return _UNSERIALIZABLE[raw]
    if raw.endswith("n"):
        # BigInt
        try:
            return int(raw[:-1])
        except ValueError:
            return raw
    try:
        return float(raw)
    except ValueError:
        return raw


@dataclass(slots=True)
class RemoteObject:
    kind: RemoteKind
    value: Any = None
    object_id: str | None = None
    class_name: str | None = None
    description: str | None = None
    has_value: bool = False

    @classmethod
    def from_cdp(cls, obj: dict[str, Any] | None) -> RemoteObject:
        if not isinstance(obj, dict):
            return cls(RemoteKind.UNDEFINED)

        js_type = obj.get("type")
        subtype = obj.get("subtype")
        class_name = obj.get("className")
        object_id = obj.get("objectId")
        description = obj.get("description")
        has_value = "value" in obj
        value = obj.get("value")
        if not has_value and isinstance(obj.get("unserializableValue"), str):
            value = parse_unserializable(obj["unserializableValue"])
            has_value = True

        if js_type == "undefined":
            kind = RemoteKind.UNDEFINED
        elif js_type == "boolean":
            kind = RemoteKind.BOOLEAN
        elif js_type in ("number", "bigint"):
            kind = RemoteKind.NUMBER
        elif js_type == "string":
            kind = RemoteKind.STRING
        elif js_type == "object":
            if subtype == "null":
                kind = RemoteKind.NULL
            elif subtype == "error":
                kind = RemoteKind.ERROR
            elif subtype == "array" and class_name == "Array":
                kind = RemoteKind.ARRAY
            elif subtype is None and class_name == "Object":
                kind = RemoteKind.OBJECT
            elif has_value and isinstance(value, list):
                kind = RemoteKind.ARRAY
            elif has_value and isinstance(value, dict):
                kind = RemoteKind.OBJECT
            else:
                # DOM nodes, maps, typed arrays, class instances...
                kind = RemoteKind.OTHER
        else:
            kind = RemoteKind.OTHER

        return cls(
            kind=kind,
            value=value,
            object_id=object_id if isinstance(object_id, str) else None,
            class_name=class_name if isinstance(class_name, str) else None,
            description=description if isinstance(description, str) else None,
            has_value=has_value,
        )

    @property
    def is_container(self) -> bool:
        return self.kind in (RemoteKind.ARRAY, RemoteKind.OBJECT)

    @property
    def needs_fetch(self) -> bool:
        """True when the value must be read property-by-property from the page."""
        return self.is_container and not self.has_value and self.object_id is not None


__all__ = ["RemoteKind", "RemoteObject", "parse_unserializable"]
