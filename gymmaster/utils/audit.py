"""
Audit Logging Utility
Records every successful state-mutating request after its response is sent

Routers opt in with ``route_class=AuditRoute`` and declare what they touch:

    router = APIRouter(
        prefix="/members",
        route_class=AuditRoute,
        dependencies=[Depends(audit_entity("Member"))],
    )

    @router.post("/{member_id}/qr", dependencies=[Depends(audit_action(action=AuditAction.UPDATE))])
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

from fastapi import Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.routing import APIRoute
from starlette.background import BackgroundTasks

from gymmaster.enums import AuditAction
from gymmaster.services import audit_service

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"

SENSITIVE_FIELDS = {
    "password",
    "current_password",
    "new_password",
    "otp_code",
    "otp_secret",
    "token",
    "refresh_token",
    "access_token",
    "qr_code",
}

EXCLUDED_PATHS = {"/health", "/docs", "/redoc", "/openapi.json", "/api/auth/refresh"}

METHOD_ACTIONS = {
    "POST": AuditAction.CREATE,
    "PUT": AuditAction.UPDATE,
    "PATCH": AuditAction.UPDATE,
    "DELETE": AuditAction.DELETE,
}


def sanitize_for_audit(data: Any, fields: Optional[Sequence[str]] = None) -> Any:
    """
    Sanitize data for audit logging

    Args:
        data: request body or record snapshot
        fields: keep only these top-level keys (None keeps everything)

    Returns:
        JSON-safe copy with sensitive values replaced by REDACTED
    """
    if data is None:
        return None

    if isinstance(data, dict):
        if fields is not None:
            data = {k: v for k, v in data.items() if k in fields}
        return {
            key: REDACTED if key in SENSITIVE_FIELDS else sanitize_for_audit(value)
            for key, value in data.items()
        }

    if isinstance(data, list):
        return [sanitize_for_audit(item) for item in data]

    return jsonable_encoder(data)


@dataclass
class AuditSpec:
    entity: Optional[str] = None
    action: Optional[str] = None
    fields: Optional[Sequence[str]] = None
    skip: bool = False


def audit_entity(entity: str) -> Callable[[Request], None]:
    """Router-level dependency naming the entity every route of the router touches"""

    def declare_entity(request: Request) -> None:
        request.state.audit_entity = entity

    return declare_entity


def audit_action(
    action: Optional[AuditAction] = None,
    entity: Optional[str] = None,
    fields: Optional[Sequence[str]] = None,
    skip: bool = False,
) -> Callable[[Request], None]:
    """Route-level dependency overriding the action/entity, restricting captured fields or opting out"""
    spec = AuditSpec(
        entity=entity,
        action=action.value if action else None,
        fields=tuple(fields) if fields is not None else None,
        skip=skip,
    )

    def declare_action(request: Request) -> None:
        request.state.audit_override = spec

    return declare_action


def remember_old_values(request: Request, values: Optional[dict]) -> None:
    """Snapshot of the record before an update, stored as old_values"""
    request.state.audit_old_values = values


def _response_data(response: Response) -> Optional[dict]:
    body = getattr(response, "body", None)
    if not body:
        return None
    try:
        payload = json.loads(body)
    except ValueError:
        return None
    if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
        return payload["data"]
    return None


def _path_id(request: Request) -> Optional[str]:
    for key, value in request.path_params.items():
        if key == "id" or key.endswith("_id"):
            return str(value)
    return None


async def _request_body(request: Request) -> Optional[Any]:
    # The body was already read (and cached) while solving the endpoint params
    body = await request.body()
    if not body:
        return None
    try:
        return json.loads(body)
    except ValueError:
        return None


def write_audit_log(database, entry: dict) -> None:
    """Background task: persist one audit entry in its own session, never raising"""
    try:
        with database.session_scope() as db:
            audit_service.create_log(db, **entry)
    except Exception as e:
        logger.error(f"Audit logging failed for {entry.get('action')} {entry.get('entity')}: {e}", exc_info=True)


async def build_audit_entry(request: Request, response: Response) -> Optional[dict]:
    """
    Decide whether a finished request is audited and assemble the record

    Returns:
        kwargs for audit_service.create_log, or None when nothing is logged
    """
    method = request.method.upper()
    if method not in METHOD_ACTIONS:
        return None
    if not 200 <= response.status_code < 300:
        return None
    if request.url.path in EXCLUDED_PATHS:
        return None

    override: AuditSpec = getattr(request.state, "audit_override", None) or AuditSpec()
    if override.skip:
        return None

    entity = override.entity or getattr(request.state, "audit_entity", None)
    if not entity:
        return None

    action = override.action or METHOD_ACTIONS[method].value
    data = _response_data(response) or {}

    response_user = data.get("user") if isinstance(data.get("user"), dict) else {}
    data_id = data.get("id", response_user.get("id"))
    data_id = str(data_id) if data_id is not None else None
    if action == AuditAction.CREATE.value:
        entity_id = data_id or _path_id(request)
    else:
        entity_id = _path_id(request) or data_id

    user_id = getattr(request.state, "user_id", None)
    if user_id is None:
        # login / register: the caller is the user in the response
        user_id = response_user.get("id")

    new_values = None
    if method != "DELETE":
        new_values = sanitize_for_audit(await _request_body(request), override.fields)

    return {
        "user_id": user_id,
        "action": action,
        "entity": entity,
        "entity_id": entity_id,
        "old_values": sanitize_for_audit(getattr(request.state, "audit_old_values", None)),
        "new_values": new_values,
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


class AuditRoute(APIRoute):
    """
    Route class that attaches an audit background task to successful mutations.
    The task runs after the response has been sent.
    """

    def get_route_handler(self) -> Callable:
        original_route_handler = super().get_route_handler()

        async def audited_route_handler(request: Request) -> Response:
            response = await original_route_handler(request)

            try:
                entry = await build_audit_entry(request, response)
            except Exception as e:
                logger.error(f"Could not build audit entry for {request.method} {request.url.path}: {e}", exc_info=True)
                entry = None

            if entry is not None:
                tasks = BackgroundTasks()
                if response.background is not None:
                    tasks.add_task(response.background)
                tasks.add_task(write_audit_log, request.app.state.db, entry)
                response.background = tasks

            return response

        return audited_route_handler
