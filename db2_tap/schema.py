from __future__ import annotations

from functools import lru_cache
from importlib import resources
import json
from typing import Any

from jsonschema import Draft202012Validator

CATEGORY_SCHEMA = "metric-category.schema.json"
PAYLOAD_SCHEMA = "db2-metrics.schema.json"


def load_schema(name: str) -> dict[str, Any]:
    schema_path = resources.files("db2_tap").joinpath(f"schemas/{name}")
    return json.loads(schema_path.read_text(encoding="utf-8"))


@lru_cache(maxsize=None)
def get_validator(name: str) -> Draft202012Validator:
    return Draft202012Validator(schema=load_schema(name))


def _errors(name: str, instance: Any) -> list[str]:
    validator = get_validator(name)
    errors = sorted(validator.iter_errors(instance), key=lambda e: [str(p) for p in e.path])
    return [
        f"{'/'.join(str(p) for p in error.path) or '<root>'}: {error.message}"
        for error in errors
    ]


def validate_categories(entries: Any) -> list[str]:
    return _errors(CATEGORY_SCHEMA, entries)


def validate_payload(payload: dict[str, Any]) -> list[str]:
    return _errors(PAYLOAD_SCHEMA, payload)
