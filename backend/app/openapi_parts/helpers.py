"""Helper functions for the OpenAPI builder."""
from typing import Any, Dict
from sqlalchemy import Boolean, DateTime, Integer, JSON


def schema_from_model(model) -> Dict[str, Any]:
    """Derive a flat object schema from a declarative model's columns."""
    props: Dict[str, Any] = {}
    required = []
    for col in model.__table__.columns:
        if isinstance(col.type, Boolean):
            prop: Dict[str, Any] = {"type": "boolean"}
        elif isinstance(col.type, Integer):
            prop = {"type": "integer"}
        elif isinstance(col.type, DateTime):
            prop = {"type": "string", "format": "date-time"}
        elif isinstance(col.type, JSON):
            prop = {"type": "array", "items": {"type": "object"}}
        else:
            prop = {"type": "string"}
        if col.nullable:
            prop["nullable"] = True
        else:
            required.append(col.name)
        props[col.name] = prop
    return {"type": "object", "properties": props, "required": required}


def caching_headers() -> Dict[str, Any]:
    return {
        "ETag": {"schema": {"type": "string"}},
        "Last-Modified": {"schema": {"type": "string"}},
        "X-Last-Modified-ISO": {"schema": {"type": "string"}},
    }


def error_responses(*codes: str) -> Dict[str, Any]:
    return {code: {"$ref": f"#/components/responses/{ERROR_RESPONSE_NAMES[code]}"} for code in codes}


ERROR_RESPONSE_NAMES = {
    "400": "BadRequest",
    "403": "Forbidden",
    "404": "NotFound",
    "409": "Conflict",
}


__all__ = ["schema_from_model", "caching_headers", "error_responses", "ERROR_RESPONSE_NAMES"]
