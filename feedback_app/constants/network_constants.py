"""Network configuration constants for the feedback server."""

DEFAULT_HOST: str = "0.0.0.0"
DEFAULT_PORT: int = 3001
DEFAULT_CORS_ORIGINS: tuple[str, ...] = ("*",)
WEBSOCKET_POLICY_VIOLATION: int = 1008
