# app/core/exceptions.py
"""Custom exceptions for the enrollment service."""
from fastapi import HTTPException
from typing import Any, Dict, Optional


class EduAssistException(HTTPException):
    """Base exception for the application."""
    error = "Error"

    def __init__(
        self,
        status_code: int,
        message: str,
        headers: Optional[Dict[str, Any]] = None,
        **extra: Any
    ):
        self.message = message
        detail = {"error": self.error, "message": message}
        detail.update(extra)
        super().__init__(status_code=status_code, detail=detail, headers=headers)


class NotFoundError(EduAssistException):
    """Exception raised when a referenced student, class or enrollment is absent."""
    error = "Not Found"

    def __init__(self, resource: str, id: Any = None):
        message = f"{resource} not found"
        if id is not None:
            message += f" with id: {id}"
        super().__init__(status_code=404, message=message, resource=resource)


class ConflictError(EduAssistException):
    """Exception raised for duplicate live enrollments or class-code collisions."""
    error = "Conflict"

    def __init__(self, message: str, **extra: Any):
        super().__init__(status_code=409, message=message, **extra)


class CapacityExceededError(EduAssistException):
    """Exception raised when a class is full at the moment of approval or fill."""
    error = "Capacity Exceeded"

    def __init__(self, class_id: Any, maximum_students: Optional[int] = None):
        message = f"Class {class_id} has reached maximum capacity"
        if maximum_students is not None:
            message += f" of {maximum_students}"
        super().__init__(
            status_code=409,
            message=message,
            class_id=str(class_id),
            maximum_students=maximum_students
        )


class InvalidTransitionError(EduAssistException):
    """Exception raised when an enrollment is moved out of a terminal state."""
    error = "Invalid Transition"

    def __init__(self, current: str, requested: str):
        super().__init__(
            status_code=409,
            message=f"Cannot change enrollment status from {current} to {requested}",
            current_status=current,
            requested_status=requested
        )


class ValidationError(EduAssistException):
    """Exception raised for validation errors."""
    error = "Validation Error"

    def __init__(self, message: str, field: Optional[str] = None):
        extra = {"field": field} if field else {}
        super().__init__(status_code=422, message=message, **extra)


class DatabaseError(EduAssistException):
    """Exception raised when the persistence layer is unreachable."""
    error = "Database Error"

    def __init__(self, message: str):
        super().__init__(status_code=503, message=message)
