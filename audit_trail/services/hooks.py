"""
Best-effort audit recording for other modules.

Business code either calls the ``log_*_event`` helpers right after
a mutating action succeeds, or wraps the action with ``audited`` (or
one of its shortcuts) so the entry is recorded automatically.

Both paths open a dedicated session so an audit failure can never
roll back the caller's own transaction, and they log instead of
raising so a broken audit store never blocks the primary action.
Code that needs to know whether the append landed should use
AuditStore directly; it reports every failure.

Recorded entries are published to the process-wide notifier unless
another one is passed in.
"""

import functools
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable

from fastapi import Request
from pydantic import BaseModel, ValidationError

from audit_trail.errors import AuditError
from audit_trail.models.audit_entry import AuditEntry
from audit_trail.models.base import SessionLocal
from audit_trail.models.enums import AuditAction, AuditEntityType
from audit_trail.schemas.audit import AuditEntryCreate
from audit_trail.services.audit_store import AuditStore
from audit_trail.services.notifier import AuditNotifier
from audit_trail.services.notifier import notifier as default_notifier

logger = logging.getLogger(__name__)

# Checked in order; the first header present wins.
IP_HEADERS = (
    "x-forwarded-for",
    "x-real-ip",
    "cf-connecting-ip",
    "x-client-ip",
    "x-cluster-client-ip",
)


@dataclass(frozen=True)
class AuditContext:
    """Who did it and in which organization, as supplied by auth."""
    org_id: str
    actor_id: str | None = None


def record_event(
    session_factory,
    context: AuditContext,
    entity_type: str,
    action: str,
    entity_id: str,
    metadata: dict[str, Any] | None = None,
    notifier: AuditNotifier | None = None,
) -> AuditEntry | None:
    """
    Append an entry, returning None instead of raising on failure.
    """
    if notifier is None:
        notifier = default_notifier
    db = session_factory()
    try:
        request = AuditEntryCreate(
            actor_id=context.actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            metadata=metadata or {},
        )
        return AuditStore(db, notifier=notifier).append(context.org_id, request)
    except (AuditError, ValidationError) as e:
        logger.warning(
            "Could not record audit event %s.%s on %s for org %s: %s",
            entity_type, action, entity_id, context.org_id, e,
        )
        return None
    finally:
        db.close()


def log_org_event(session_factory, context, action, entity_id, metadata=None, notifier=None):
    return record_event(
        session_factory, context, AuditEntityType.ORG.value, action, entity_id,
        metadata, notifier,
    )


def log_record_event(session_factory, context, action, entity_id, metadata=None, notifier=None):
    return record_event(
        session_factory, context, AuditEntityType.RECORD.value, action, entity_id,
        metadata, notifier,
    )


def log_reminder_event(session_factory, context, action, entity_id, metadata=None, notifier=None):
    return record_event(
        session_factory, context, AuditEntityType.REMINDER.value, action, entity_id,
        metadata, notifier,
    )


def log_billing_event(session_factory, context, action, entity_id, metadata=None, notifier=None):
    return record_event(
        session_factory, context, AuditEntityType.SUBSCRIPTION.value, action, entity_id,
        metadata, notifier,
    )


def log_member_event(session_factory, context, action, entity_id, metadata=None, notifier=None):
    return record_event(
        session_factory, context, AuditEntityType.MEMBER.value, action, entity_id,
        metadata, notifier,
    )


# --- Decorators ---

def request_metadata(request: Request) -> dict[str, str]:
    """Client IP address and user agent of an incoming request."""
    metadata = {}
    ip_address = None
    for header in IP_HEADERS:
        value = request.headers.get(header)
        if value:
            # x-forwarded-for lists the original client first.
            ip_address = value.split(",")[0].strip()
            break
    if ip_address is None and request.client is not None:
        ip_address = request.client.host
    if ip_address:
        metadata["ip_address"] = ip_address
    user_agent = request.headers.get("user-agent")
    if user_agent:
        metadata["user_agent"] = user_agent
    return metadata


def _snapshot(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return value


def _find_argument(arguments: dict[str, Any], kind: type) -> Any:
    for value in arguments.values():
        if isinstance(value, kind):
            return value
    return None


def audited(
    action: str,
    entity_type: str,
    *,
    entity_id_param: str = "entity_id",
    entity_id_from_result: Callable[[Any], Any] | None = None,
    capture_metadata: Callable[[dict[str, Any], Any], dict[str, Any]] | None = None,
    fetch_before_state: Callable[[Any], Any] | None = None,
    session_factory=None,
    notifier: AuditNotifier | None = None,
):
    """
    Record an audit entry after the wrapped function returns.

    The organization and actor come from an ``AuditContext`` argument
    of the wrapped function, or failing that from an ``org_id``
    argument. The entity id is read from the ``entity_id_param``
    argument, or from the result via ``entity_id_from_result`` for
    creations. When a ``Request`` argument is present, the client IP
    and user agent are added to the metadata.

    ``fetch_before_state(entity_id)`` runs before the wrapped call.
    For updates the entry's metadata then carries ``before`` and
    ``after`` (the result) snapshots.

    Nothing is recorded when the wrapped function raises. Failures
    while building or appending the entry are logged and never
    change the wrapped function's outcome. Works on plain functions
    and on FastAPI ``def`` endpoints.
    """
    def decorator(func):
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            bound = signature.bind(*args, **kwargs)
            bound.apply_defaults()
            arguments = dict(bound.arguments)
            entity_id = arguments.get(entity_id_param)

            before = None
            if fetch_before_state is not None and entity_id is not None:
                try:
                    before = _snapshot(fetch_before_state(entity_id))
                except Exception:
                    logger.exception(
                        "Could not fetch before state of %s %s for audit",
                        entity_type, entity_id,
                    )

            result = func(*args, **kwargs)

            if entity_id is None and entity_id_from_result is not None:
                try:
                    entity_id = entity_id_from_result(result)
                except Exception:
                    logger.exception(
                        "Could not read %s id from result for audit", entity_type
                    )

            context = _find_argument(arguments, AuditContext)
            if context is None and arguments.get("org_id"):
                context = AuditContext(org_id=arguments["org_id"])
            if context is None or entity_id is None:
                logger.warning(
                    "Skipping audit of %s.%s: missing organization or entity id",
                    entity_type, action,
                )
                return result

            metadata: dict[str, Any] = {}
            if capture_metadata is not None:
                try:
                    metadata = dict(capture_metadata(arguments, result))
                except Exception:
                    logger.exception(
                        "Could not capture audit metadata for %s.%s",
                        entity_type, action,
                    )
            if action == AuditAction.UPDATED.value and before is not None:
                metadata["before"] = before
                metadata["after"] = _snapshot(result)

            request = _find_argument(arguments, Request)
            if request is not None:
                metadata.update(request_metadata(request))

            record_event(
                session_factory or SessionLocal,
                context,
                entity_type,
                action,
                str(entity_id),
                metadata,
                notifier,
            )
            return result

        return wrapper

    return decorator


def audit_create(entity_type: str, entity_id_from_result: Callable[[Any], Any], **options):
    return audited(
        AuditAction.CREATED.value, entity_type,
        entity_id_from_result=entity_id_from_result, **options,
    )


def audit_update(entity_type: str, entity_id_param: str = "entity_id", **options):
    return audited(
        AuditAction.UPDATED.value, entity_type,
        entity_id_param=entity_id_param, **options,
    )


def audit_delete(entity_type: str, entity_id_param: str = "entity_id", **options):
    return audited(
        AuditAction.DELETED.value, entity_type,
        entity_id_param=entity_id_param, **options,
    )


def audit_role_change(entity_type: str, entity_id_param: str = "entity_id", **options):
    """Records ``old_role`` and ``new_role`` from the wrapped call's arguments."""
    options.setdefault("capture_metadata", lambda arguments, result: {
        "old_role": arguments.get("old_role"),
        "new_role": arguments.get("new_role", arguments.get("role")),
    })
    return audited(
        AuditAction.ROLE_CHANGED.value, entity_type,
        entity_id_param=entity_id_param, **options,
    )


def audit_invite(entity_type: str, entity_id_from_result: Callable[[Any], Any], **options):
    """Records the invited ``email`` and ``role`` from the wrapped call's arguments."""
    options.setdefault("capture_metadata", lambda arguments, result: {
        "email": arguments.get("email"),
        "role": arguments.get("role"),
    })
    return audited(
        AuditAction.INVITED.value, entity_type,
        entity_id_from_result=entity_id_from_result, **options,
    )
