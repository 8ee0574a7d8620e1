"""Domain enumerations for the review drip.

All enums use the (str, Enum) pattern to ensure JSON serialization compatibility.
"""

from enum import Enum


class DripStatus(str, Enum):
    """Overall progress of one customer's review-request drip."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    UNSUBSCRIBED = "unsubscribed"


class DripStage(str, Enum):
    """The four message slots of a drip, in firing order."""

    INITIAL = "initial"
    FIRST_FOLLOW_UP = "first_follow_up"
    SECOND_FOLLOW_UP = "second_follow_up"
    FINAL_FOLLOW_UP = "final_follow_up"


class Channel(str, Enum):
    """Delivery channel for a drip message."""

    EMAIL = "email"
    SMS = "sms"


class ReviewRequestMethod(str, Enum):
    """Primary contact method recorded on a review request."""

    EMAIL = "email"
    SMS = "sms"


class ReviewRequestState(str, Enum):
    """Delivery status of the review request record itself."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
