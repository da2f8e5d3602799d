from typing import Optional

class BaseCustomError(Exception):
    """Base exception class for custom errors"""
    status_code = 500

    def __init__(self, message: str, error_code: Optional[str] = None, details: Optional[dict] = None):
        self.message = message
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)

class DatabaseError(BaseCustomError):
    """Raised when database operations fail"""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message, "DATABASE_ERROR")

class ValidationError(BaseCustomError):
    """Raised when input fields are missing or malformed"""
    status_code = 422

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, "VALIDATION_ERROR", details)

class PolicyViolation(BaseCustomError):
    """Raised when a submission breaches a company policy (e.g. amount ceiling)"""
    status_code = 400

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, "POLICY_VIOLATION", details)

class AuthenticationError(BaseCustomError):
    """Raised when the caller identity is missing or unreadable"""
    status_code = 401

    def __init__(self, message: str):
        super().__init__(message, "AUTHENTICATION_ERROR")

class AuthorizationError(BaseCustomError):
    """Raised when the actor is not permitted to perform the action"""
    status_code = 403

    def __init__(self, message: str):
        super().__init__(message, "AUTHORIZATION_ERROR")

class NotFoundError(BaseCustomError):
    """Raised when a resource is absent or outside the actor's company"""
    status_code = 404

    def __init__(self, message: str):
        super().__init__(message, "NOT_FOUND")

class StateError(BaseCustomError):
    """Raised when an operation is invalid for the expense's lifecycle state"""
    status_code = 409

    def __init__(self, message: str):
        super().__init__(message, "STATE_ERROR")

class ConflictError(BaseCustomError):
    """Raised when a concurrent modification is detected; the caller should retry"""
    status_code = 409

    def __init__(self, message: str):
        super().__init__(message, "CONFLICT")

class ConfigurationError(BaseCustomError):
    """Raised when a company's approval configuration is internally inconsistent"""
    status_code = 422

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, "CONFIGURATION_ERROR", details)
