"""Request-body validation against the JSON schemas shipped in ``auctioneer/schemas``."""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any

from jsonschema import Draft202012Validator, ValidationError
from jsonschema.exceptions import best_match

_SCHEMA_DIR = Path(__file__).resolve().parent.parent / "schemas"


def describe_error(error: ValidationError) -> str:
    """Render a validation error as ``field.path: message`` for API responses."""
    location = ".".join(str(part) for part in error.absolute_path)
    return f"{location}: {error.message}" if location else error.message


class SchemaRegistry:
    def __init__(self, schema_dir: Path) -> None:
        self._schemas: dict[str, Draft202012Validator] = {}
        for schema_path in sorted(schema_dir.glob("*.json")):
            schema = json.loads(schema_path.read_text())
            Draft202012Validator.check_schema(schema)
            self._schemas[schema_path.stem] = Draft202012Validator(schema)

    def names(self) -> list[str]:
        return sorted(self._schemas)

    def _validator(self, schema_name: str) -> Draft202012Validator:
        try:
            return self._schemas[schema_name]
        except KeyError as exc:
            raise ValueError(f"unknown schema {schema_name}") from exc

    def validate(self, schema_name: str, payload: Any) -> None:
        """Raise the most relevant ``ValidationError`` if ``payload`` does not conform."""
        error = best_match(self._validator(schema_name).iter_errors(payload))
        if error is not None:
            raise error


@lru_cache(maxsize=1)
def get_schema_registry() -> SchemaRegistry:
    return SchemaRegistry(_SCHEMA_DIR)
