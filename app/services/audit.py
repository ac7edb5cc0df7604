"""
Timeline event log.
Append-only: events are added alongside the mutation that caused them and are
never updated or deleted.
"""
from typing import Optional, Dict, Any

import structlog
from sqlalchemy.orm import Session

from ..models.models import TimelineEvent, User, utcnow
from ..schemas.hierarchy import EventType


logger = structlog.get_logger(__name__)


def record_event(
    db: Session,
    owner_entity_id: str,
    event_type: EventType,
    actor: Optional[User] = None,
    description: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> TimelineEvent:
    """
    Append a timeline event for a main task or sub-task.

    The event joins the caller's transaction; it is committed together with
    the mutation it describes.

    Args:
        db: Database session
        owner_entity_id: Main task or sub-task id the event belongs to
        event_type: Kind of event
        actor: User who performed the action (None for system events)
        description: Human-readable summary
        details: Event-specific payload

    Returns:
        The pending TimelineEvent row
    """
    event = TimelineEvent(
        owner_entity_id=owner_entity_id,
        type=event_type.value,
        description=description,
        author_uid=actor.uid if actor else None,
        author_name=(actor.display_name or actor.email or actor.uid) if actor else "System",
        details=details or {},
        timestamp=utcnow(),
    )
    db.add(event)
    db.flush()
    logger.info(
        "timeline_event_recorded",
        event_id=event.id,
        owner_entity_id=owner_entity_id,
        type=event_type.value,
        author_uid=event.author_uid,
    )
    return event


def compute_diff(before: Dict, after: Dict) -> Dict:
    """
    Compute a diff between two dictionaries.

    Args:
        before: Before state
        after: After state

    Returns:
        Dict with before/after values for changed fields
    """
    diff = {}
    all_keys = set(before.keys()) | set(after.keys())

    for key in all_keys:
        before_val = before.get(key)
        after_val = after.get(key)

        if before_val != after_val:
            diff[key] = {
                "before": before_val,
                "after": after_val,
            }

    return diff
