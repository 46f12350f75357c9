from typing import Optional


class ServiceError(ValueError):
    status_code = 400
    default_message = "Request failed"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def payload(self) -> dict[str, object]:
        return {"message": self.message}


class ValidationError(ServiceError):
    status_code = 400
    default_message = "Invalid input"

    def __init__(
        self,
        message: Optional[str] = None,
        errors: Optional[list[dict[str, str]]] = None,
    ) -> None:
        super().__init__(message)
        self.errors = errors or []

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(message, errors=[{"field": field, "message": message}])

    def payload(self) -> dict[str, object]:
        return {"message": self.message, "errors": self.errors}


class Unauthenticated(ServiceError):
    status_code = 401
    default_message = "Authentication required"


class InvalidCredentials(Unauthenticated):
    default_message = "Invalid credentials"


class Forbidden(ServiceError):
    status_code = 403
    default_message = "Forbidden"


class NotFoundError(ServiceError):
    status_code = 404
    default_message = "Not found"


class ConflictError(ServiceError):
    status_code = 409
    default_message = "Already exists"


class InternalError(ServiceError):
    status_code = 500
    default_message = "Internal server error"
