"""External collaborators: grading, content and the exam calendar."""

from .exam_calendar import DatabaseExamCalendar
from .http_clients import HttpContentProvider, HttpGrader
from .protocols import ContentProvider, ExamCalendar, GradeResult, Grader, Item

__all__ = [
    "ContentProvider",
    "DatabaseExamCalendar",
    "ExamCalendar",
    "GradeResult",
    "Grader",
    "HttpContentProvider",
    "HttpGrader",
    "Item",
]
