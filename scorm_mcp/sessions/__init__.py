from .course_resources import CourseResources, course_key
from .manager import SessionManager
from .types import Event, Session, SessionState

__all__ = ["CourseResources", "Event", "Session", "SessionManager", "SessionState", "course_key"]
