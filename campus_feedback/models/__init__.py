from .user import User
from .subject import Subject
from .feedback import FeedbackSubmission
from .feedback_period import FeedbackPeriod
from .system_settings import SystemSettings

__all__ = [
    "User",
    "Subject",
    "FeedbackSubmission",
    "FeedbackPeriod",
    "SystemSettings",
]
