from . import health
from .school_authority import classes, enrollment, students

__all__ = [
    "health",
    "classes",
    "enrollment",
    "students"
]
