"""Timeline resolution and read views."""

from licitagraph.timeline.comments import TimelineCommentService
from licitagraph.timeline.phases import PHASE_ORDER, phase_for_event_type, semantic_order
from licitagraph.timeline.timeline_resolver import TimelineResolver, TimelineResult, shift_date
from licitagraph.timeline.views import Timeline, TimelineStats, TimelineViews, compute_urgency

__all__ = [
    "PHASE_ORDER",
    "Timeline",
    "TimelineCommentService",
    "TimelineResolver",
    "TimelineResult",
    "TimelineStats",
    "TimelineViews",
    "compute_urgency",
    "phase_for_event_type",
    "semantic_order",
    "shift_date",
]
