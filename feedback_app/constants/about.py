"""Static metadata describing the feedback server."""

APP_NAME = "Class Feedback"
APP_VERSION = "0.1.0"
APP_LICENSE = "MIT License"
APP_ABOUT_TEXT = (
    "Class Feedback lets an instructor open a feedback session for a class, "
    "collect anonymous per-topic understanding ratings and comments, and watch the results live."
)
