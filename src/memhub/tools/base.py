"""Tool interface shared by everything the registry dispatches."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

# JSON Schema type -> (accepted Python types, phrase used in error messages)
_SCHEMA_TYPES: dict[str, tuple[tuple[type, ...], str]] = {
    "string": ((str,), "a string"),
    "integer": ((int,), "an integer"),
    "number": ((int, float), "a number"),
    "boolean": ((bool,), "a boolean"),
    "array": ((list,), "an array"),
    "object": ((dict,), "an object"),
}


def _matches_type(value: Any, schema_type: str) -> bool:
    accepted, _ = _SCHEMA_TYPES[schema_type]
    # bool is an int subclass but never a valid integer or number here
    if isinstance(value, bool) and schema_type != "boolean":
        return False
    return isinstance(value, accepted)


@dataclass
class ToolResult:
    """Outcome of a tool call.

    ``output`` is the text handed back to the caller (JSON for the
    knowledge tools); ``error`` is set only when ``success`` is False.
    """

    success: bool
    output: str
    error: str | None = None
    metadata: dict[str, Any] | None = None

    @classmethod
    def json(cls, payload: dict[str, Any]) -> "ToolResult":
        """Successful result with a JSON text body."""
        return cls(success=True, output=json.dumps(payload, ensure_ascii=False))

    @classmethod
    def failure(cls, error: str) -> "ToolResult":
        return cls(success=False, output="", error=error)


class Tool(ABC):
    """A named operation with a JSON Schema for its arguments."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique tool name."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        """What the tool does, written for the calling agent."""
        ...

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        """JSON Schema (type 'object') describing the arguments."""
        ...

    @abstractmethod
    async def execute(self, **kwargs: Any) -> ToolResult:
        """Run the tool with already validated arguments."""
        ...

    def get_schema(self) -> dict[str, Any]:
        """Function-calling schema."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def validate_args(self, args: dict[str, Any]) -> tuple[bool, str | None]:
        """Check arguments against the top level of the schema.

        Required keys, unknown keys, declared types and string enums are
        checked; value ranges are left to the tool itself.

        Returns:
            (True, None) if valid, otherwise (False, error message).
        """
        properties: dict[str, Any] = self.parameters.get("properties", {})

        missing = [key for key in self.parameters.get("required", []) if key not in args]
        if missing:
            return False, f"Missing required argument: {missing[0]}"

        for key, value in args.items():
            spec = properties.get(key)
            if spec is None:
                return False, f"Unknown argument: {key}"

            schema_type = spec.get("type")
            if schema_type in _SCHEMA_TYPES and not _matches_type(value, schema_type):
                return False, f"Argument '{key}' must be {_SCHEMA_TYPES[schema_type][1]}"

            choices = spec.get("enum")
            if choices is not None and value not in choices:
                return False, f"Argument '{key}' must be one of: {', '.join(map(str, choices))}"

        return True, None
