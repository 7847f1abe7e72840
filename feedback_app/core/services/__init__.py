"""Core services composed by the session coordinator."""

from .broadcast_dispatcher import BroadcastDispatcher, EventSink
from .presence_tracker import PresenceTracker
from .rating_aggregator import RatingAggregator, round_half_away, validate_score
from .session_registry import SessionRegistry

__all__ = [
    "BroadcastDispatcher",
    "EventSink",
    "PresenceTracker",
    "RatingAggregator",
    "SessionRegistry",
    "round_half_away",
    "validate_score",
]
