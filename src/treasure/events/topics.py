"""Event bus topic names."""

ENROLLMENT_CREATED = "enrollment.created"
APPROVAL_REQUESTED = "approval_requested"
ENROLLMENT_APPROVED = "enrollment.approved"
ENROLLMENT_CANCELLED = "enrollment.cancelled"
PAYMENT_REQUESTED = "payment.requested"
TASK_COMPLETED = "task.completed"

# Inbound
PAYMENT_STATUS_UPDATED = "payment.status.updated"
USER_EVENTS = "user-events"

INBOUND_TOPICS = (PAYMENT_STATUS_UPDATED, USER_EVENTS)


def stream_name(prefix: str, topic: str) -> str:
    """Redis stream key for a topic."""
    return f"{prefix}:{topic}"
