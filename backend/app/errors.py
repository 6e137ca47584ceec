"""Domain error taxonomy for the maintenance workflow services.

Services raise these instead of calling ``abort`` so they can be exercised
without a request context. ``register_error_handlers`` renders them in the
same ``{'error': {...}}`` envelope used for HTTP errors, adding the machine
readable ``kind``.
"""
from __future__ import annotations
from typing import Any, Dict, Optional
from werkzeug.exceptions import HTTPException


class WorkflowError(Exception):
    kind = 'WorkflowError'
    status = 400
    title = 'Bad Request'

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_payload(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            'status': self.status,
            'title': self.title,
            'detail': self.message,
            'kind': self.kind,
        }
        if self.details:
            body['details'] = self.details
        return {'error': body}


class ValidationError(WorkflowError):
    kind = 'ValidationError'


class NotFound(WorkflowError):
    kind = 'NotFound'
    status = 404
    title = 'Not Found'


class InvalidTransition(WorkflowError):
    kind = 'InvalidTransition'

    def __init__(self, current_status: str, action: str, message: Optional[str] = None):
        super().__init__(
            message or f'Cannot {action} while status is {current_status}',
            {'current_status': current_status, 'action': action},
        )
        self.current_status = current_status
        self.action = action


class Conflict(WorkflowError):
    kind = 'Conflict'
    status = 409
    title = 'Conflict'


class DuplicatePendingApproval(Conflict):
    kind = 'DuplicatePendingApproval'


class ApprovalPending(Conflict):
    kind = 'ApprovalPending'


class AlreadyResolved(Conflict):
    kind = 'AlreadyResolved'


class AlreadySettled(Conflict):
    kind = 'AlreadySettled'


class ConcurrentModification(Conflict):
    kind = 'ConcurrentModification'


class ReceiptNumberConflict(Conflict):
    kind = 'ReceiptNumberConflict'


def register_error_handlers(app) -> None:
    @app.errorhandler(WorkflowError)
    def handle_workflow_error(e):  # type: ignore
        app.logger.warning('%s rejected: %s', e.kind, e.message)
        return e.to_payload(), e.status

    @app.errorhandler(Exception)
    def handle_errors(e):  # type: ignore
        if isinstance(e, HTTPException):
            return {'error': {'status': e.code, 'title': e.name, 'detail': e.description}}, e.code
        app.logger.exception('Unhandled exception')
        return {'error': {'status': 500, 'title': 'Internal Server Error', 'detail': 'Unexpected error'}}, 500


__all__ = [
    'WorkflowError', 'ValidationError', 'NotFound', 'InvalidTransition', 'Conflict',
    'DuplicatePendingApproval', 'ApprovalPending', 'AlreadyResolved', 'AlreadySettled',
    'ConcurrentModification', 'ReceiptNumberConflict', 'register_error_handlers',
]
