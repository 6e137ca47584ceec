"""Minimal deterministic OpenAPI spec builder.

Scope:
- For each resource: list GET + single GET & HEAD with caching headers
- Action endpoints (transition, approve/reject, settle)
- Extra read endpoints (board, logs, pending count, summary)
- Workflow transition table published as ``x-transitions`` on the schema
"""
from typing import Any, Dict
from .openapi_parts.constants import ACTION_REGISTRY, EXTRA_READS, LIST_FILTERS, RESOURCES, SORT_DETAILS
from .openapi_parts.helpers import caching_headers, error_responses, schema_from_model
from .models.workflow import WorkflowInstance, TransitionLogEntry
from .models.approval import ApprovalRequest
from .models.payment import PendingPayment
from .services.workflow import TRANSITIONS
from .constants.permissions import TRANSITION_ACTION_PERMISSIONS

__all__ = ["build_openapi_spec"]

MODELS = {
    "WorkflowInstance": WorkflowInstance,
    "TransitionLogEntry": TransitionLogEntry,
    "ApprovalRequest": ApprovalRequest,
    "PendingPayment": PendingPayment,
}


def _ref(kind: str, name: str) -> Dict[str, str]:
    return {"$ref": f"#/components/{kind}/{name}"}


def _ok(schema_name: str, cached: bool = False) -> Dict[str, Any]:
    resp: Dict[str, Any] = {
        "description": "OK",
        "content": {"application/json": {"schema": _ref("schemas", schema_name)}},
    }
    if cached:
        resp["headers"] = caching_headers()
    return resp


def _schemas() -> Dict[str, Any]:
    schemas = {name: schema_from_model(model) for name, model in MODELS.items()}
    schemas["WorkflowInstance"]["x-states"] = list(WorkflowInstance.ALL_STATUSES)
    schemas["WorkflowInstance"]["x-transitions"] = [
        {"from": t.source, "action": t.action, "to": t.target} for t in TRANSITIONS.transitions
    ]
    schemas["ApprovalRequest"]["x-transitions"] = ["PENDING", "APPROVED", "REJECTED"]
    schemas["PendingPayment"]["x-transitions"] = ["PENDING", "PAID"]
    schemas["Pagination"] = {
        "type": "object",
        "properties": {
            "total": {"type": "integer"},
            "limit": {"type": "integer"},
            "offset": {"type": "integer"},
            "returned": {"type": "integer"},
        },
        "required": ["total", "limit", "offset", "returned"],
    }
    schemas["Error"] = {
        "type": "object",
        "properties": {
            "error": {
                "type": "object",
                "properties": {
                    "status": {"type": "integer"},
                    "title": {"type": "string"},
                    "detail": {"type": "string"},
                    "kind": {"type": "string"},
                    "details": {"type": "object"},
                },
                "required": ["status", "title", "detail"],
            }
        },
        "required": ["error"],
    }
    schemas["TransitionRequest"] = {
        "type": "object",
        "properties": {
            "action": {"type": "string", "enum": list(TransitionLogEntry.ALL_ACTIONS)},
            "payload": {"type": "object"},
            "expected_version": {"type": "integer"},
        },
        "required": ["action"],
    }
    return schemas


def build_openapi_spec() -> Dict[str, Any]:
    error_body = {"application/json": {"schema": _ref("schemas", "Error")}}
    components: Dict[str, Any] = {
        "schemas": _schemas(),
        "responses": {
            "BadRequest": {"description": "Bad Request / InvalidTransition / ValidationError", "content": error_body},
            "Forbidden": {"description": "Missing permission or branch scope", "content": error_body},
            "NotFound": {"description": "Not Found", "content": error_body},
            "Conflict": {"description": "Conflict (pending approval, already resolved/settled, version)", "content": error_body},
        },
        "securitySchemes": {"BearerAuth": {"type": "http", "scheme": "bearer", "bearerFormat": "JWT"}},
        "parameters": {
            "LimitParam": {"name": "limit", "in": "query", "schema": {"type": "integer", "default": 50}},
            "OffsetParam": {"name": "offset", "in": "query", "schema": {"type": "integer", "default": 0}},
        },
    }
    params = components["parameters"]
    for pname, desc in SORT_DETAILS.items():
        params[pname] = {"name": "sort", "in": "query", "schema": {"type": "string"}, "description": desc}

    paths: Dict[str, Any] = {}
    for schema_name, coll, id_param, service, sort_param in RESOURCES:
        single = f"{coll}/{{{id_param}}}"
        id_spec = {"name": id_param, "in": "path", "required": True, "schema": {"type": "integer"}}
        filters = [
            {"name": name, "in": "query", "schema": {"type": typ}} for name, typ in LIST_FILTERS.get(coll, [])
        ]
        list_ok = {
            "description": "OK",
            "headers": caching_headers(),
            "content": {"application/json": {"schema": {
                "type": "object",
                "properties": {
                    "data": {"type": "array", "items": _ref("schemas", schema_name)},
                    "pagination": _ref("schemas", "Pagination"),
                },
            }}},
        }
        paths[coll] = {
            "get": {
                "summary": f"List {schema_name}",
                "parameters": [_ref("parameters", "LimitParam"), _ref("parameters", "OffsetParam"), _ref("parameters", sort_param)] + filters,
                "responses": {"200": list_ok, "304": {"description": "Not Modified"}} | error_responses("400", "403"),
                "x-required-permissions": [f"{service}.READ"],
            }
        }
        read_op = {
            "parameters": [id_spec],
            "responses": {"200": _ok(schema_name, cached=True), "304": {"description": "Not Modified"}} | error_responses("403", "404"),
            "x-required-permissions": [f"{service}.READ"],
        }
        paths[single] = {
            "get": {"summary": f"Get {schema_name}", **read_op},
            "head": {"summary": f"Head {schema_name}", **read_op},
        }
        for action in ACTION_REGISTRY.get(schema_name, []):
            op: Dict[str, Any] = {
                "summary": action["summary"],
                "parameters": [id_spec],
                "responses": {"200": {"description": "OK"}} | error_responses("400", "403", "404", "409"),
                "x-required-permissions": [action["permission"]] if action["permission"] else [],
            }
            if action["action"] == "transition":
                op["requestBody"] = {"content": {"application/json": {"schema": _ref("schemas", "TransitionRequest")}}}
                op["x-action-permissions"] = dict(TRANSITION_ACTION_PERMISSIONS)
            paths[f"{single}/{action['action']}"] = {action["method"]: op}

    paths["/workflow"]["post"] = {
        "summary": "Receive a machine at the center",
        "responses": {"201": _ok("WorkflowInstance")} | error_responses("400", "403"),
        "x-required-permissions": ["MNT.MANAGE"],
    }
    for path, (summary, perm) in EXTRA_READS.items():
        paths[path] = {
            "get": {
                "summary": summary,
                "responses": {"200": {"description": "OK"}} | error_responses("400", "403"),
                "x-required-permissions": [perm],
            }
        }

    # Add operationIds & tags
    tag_desc: Dict[str, str] = {}
    for path, ops in paths.items():
        tag = path.split("/")[1].capitalize()
        for method, od in ops.items():
            rid = path.strip("/").replace("/", "_").replace("{", "").replace("}", "").replace("-", "_")
            od["operationId"] = f"auto_{method}_{rid}"
            od["tags"] = [tag]
        tag_desc[tag] = f"{tag} endpoints"

    paths["/healthz"] = {"get": {"summary": "Liveness", "security": [], "responses": {"200": {"description": "OK"}}}}

    return {
        "openapi": "3.0.3",
        "info": {"title": "Maintenance Center API", "version": "0.1.0"},
        "paths": dict(sorted(paths.items())),
        "components": components,
        "security": [{"BearerAuth": []}],
        "tags": [{"name": n, "description": d} for n, d in sorted(tag_desc.items())],
    }
