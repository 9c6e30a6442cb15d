"""Typed failures raised by the services and mapped to HTTP statuses by the app."""


class TaskboardError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class NotFound(TaskboardError):
    status_code = 404


class InvalidOperation(TaskboardError):
    status_code = 400


class ValidationFailed(TaskboardError):
    status_code = 400


class Unauthenticated(TaskboardError):
    status_code = 401


class Unauthorized(TaskboardError):
    status_code = 403
