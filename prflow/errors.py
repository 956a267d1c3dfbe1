from __future__ import annotations

from typing import Any, Dict, Iterable

from prflow.ui_strings import error_message


class AppError(Exception):
    default_code = "system_error"
    default_kind = "SystemError"
    default_message_key = "unexpected_error"
    default_http_status = 500
    default_critical = True

    def __init__(
        self,
        code: str | None = None,
        message_key: str | None = None,
        http_status: int | None = None,
        critical: bool | None = None,
        details: str | None = None,
        payload: Dict[str, Any] | None = None,
    ) -> None:
        self.code = (code or self.default_code).strip()
        self.kind = self.default_kind
        self.message_key = (message_key or self.default_message_key).strip()
        self.http_status = int(http_status or self.default_http_status)
        self.critical = bool(self.default_critical if critical is None else critical)
        self.details = (details or "").strip() or None
        self.payload = dict(payload or {})
        super().__init__(self.details or self.code)

    def user_message(self) -> str:
        fallback = error_message("unexpected_error", "The operation could not be completed.")
        return error_message(self.message_key, fallback)

    def to_response_payload(self, request_id: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "error": self.code,
            "kind": self.kind,
            "message": self.user_message(),
            "request_id": request_id,
        }
        if self.payload:
            payload.update(self.payload)
        return payload


class UserActionError(AppError):
    default_code = "action_invalid"
    default_kind = "UserActionError"
    default_message_key = "action_invalid"
    default_http_status = 400
    default_critical = False


class ValidationError(UserActionError):
    default_code = "validation_error"
    default_kind = "ValidationError"
    default_message_key = "validation_error"
    default_http_status = 400
    default_critical = False


class ReasonRequiredError(ValidationError):
    default_code = "reason_required"
    default_message_key = "reason_required"


class NotFoundError(UserActionError):
    default_code = "not_found"
    default_kind = "NotFound"
    default_message_key = "not_found"
    default_http_status = 404
    default_critical = False


class AuthenticationError(UserActionError):
    default_code = "auth_required"
    default_kind = "Unauthorized"
    default_message_key = "auth_required"
    default_http_status = 401
    default_critical = False


class PermissionError(UserActionError):
    default_code = "permission_denied"
    default_kind = "Forbidden"
    default_message_key = "permission_denied"
    default_http_status = 403
    default_critical = False


ForbiddenError = PermissionError


class InvalidStateTransitionError(UserActionError):
    default_code = "invalid_state_transition"
    default_kind = "InvalidStateTransition"
    default_message_key = "invalid_state_transition"
    default_http_status = 409
    default_critical = False


class ItemsAlreadyAssignedError(UserActionError):
    default_code = "items_already_assigned"
    default_kind = "ItemsAlreadyAssigned"
    default_message_key = "items_already_assigned"
    default_http_status = 409
    default_critical = False


class AlreadySelectedError(UserActionError):
    default_code = "already_selected"
    default_kind = "AlreadySelected"
    default_message_key = "already_selected"
    default_http_status = 409
    default_critical = False


class NoApproverFoundError(UserActionError):
    default_code = "no_approver_found"
    default_kind = "NoApproverFound"
    default_message_key = "no_approver_found"
    default_http_status = 422
    default_critical = False


class SequenceExhaustedError(AppError):
    default_code = "sequence_exhausted"
    default_kind = "SequenceExhausted"
    default_message_key = "sequence_exhausted"
    default_http_status = 503
    default_critical = False


class SystemError(AppError):
    default_code = "system_error"
    default_kind = "SystemError"
    default_message_key = "unexpected_error"
    default_http_status = 500
    default_critical = True


def not_found(entity: str, entity_id: Any) -> NotFoundError:
    return NotFoundError(
        code=f"{entity}_not_found",
        message_key=f"{entity}_not_found",
        details=f"{entity} {entity_id} not found",
        payload={"entity": entity, f"{entity}_id": entity_id},
    )


def invalid_transition(
    entity: str,
    entity_id: Any,
    status: str | None,
    action: str,
    allowed: Iterable[str] = (),
) -> InvalidStateTransitionError:
    return InvalidStateTransitionError(
        details=f"{action} not allowed for {entity} {entity_id} in status {status}",
        payload={
            "entity": entity,
            f"{entity}_id": entity_id,
            "status": status,
            "action": action,
            "allowed_actions": list(allowed),
        },
    )


def forbidden(message_key: str, **ids: Any) -> PermissionError:
    return PermissionError(
        code="permission_denied",
        message_key=message_key,
        details=message_key,
        payload=dict(ids),
    )


def validation(message_key: str, **ids: Any) -> ValidationError:
    return ValidationError(
        code=message_key,
        message_key=message_key,
        details=message_key,
        payload=dict(ids),
    )


def register_error_handlers(app) -> None:
    """Render ``AppError`` as JSON and hide everything else behind a generic 500."""
    from flask import jsonify, request
    from werkzeug.exceptions import HTTPException

    from prflow.observability import ensure_request_id

    def _respond(error: AppError):
        request_id = ensure_request_id()
        context = {
            "request_id": request_id,
            "error_code": error.code,
            "error_kind": error.kind,
            "http_status": error.http_status,
            "request_path": request.path,
            "http_method": request.method,
        }
        if error.critical:
            app.logger.error("application_error", extra={**context, "details": error.details}, exc_info=True)
        else:
            app.logger.warning(
                "application_error",
                extra={**context, "message_key": error.message_key, "details": error.details},
            )
        return jsonify(error.to_response_payload(request_id)), error.http_status

    @app.errorhandler(AppError)
    def _handle_app_error(exc: AppError):
        return _respond(exc)

    @app.errorhandler(Exception)
    def _handle_unexpected(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc
        # Details stay in the log; the client only sees the generic message.
        return _respond(SystemError(code="unexpected_error", details=f"{type(exc).__name__}: {exc}"))
