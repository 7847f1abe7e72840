"""Feedback-related constants shared across core, persistence and server layers."""

MIN_SCORE: int = 1
MAX_SCORE: int = 10
AVERAGE_DECIMAL_PLACES: int = 2
SUBSCRIBER_QUEUE_SIZE: int = 256
DEFAULT_DATABASE_URL: str = "sqlite:///feedback.db"
