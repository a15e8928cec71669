import enum

# Enums are stored as VARCHAR columns guarded by CHECK constraints rather than
# native PG ENUM types, so adding a value never needs an ALTER TYPE migration.


class UserRole(str, enum.Enum):
    MEMBER = "member"
    INSTRUCTOR = "instructor"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


STAFF_ROLES = frozenset({UserRole.ADMIN, UserRole.SUPER_ADMIN})


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class DisputeReason(str, enum.Enum):
    PROPERTY_NOT_AS_DESCRIBED = "property_not_as_described"
    ACCESS_ISSUES = "access_issues"
    PAYMENT_DISPUTE = "payment_dispute"
    EARLY_TERMINATION = "early_termination"
    DAMAGE_CLAIM = "damage_claim"
    SAFETY_CONCERN = "safety_concern"
    COMMUNICATION_ISSUES = "communication_issues"
    OTHER = "other"


class DisputeStatus(str, enum.Enum):
    OPEN = "open"
    UNDER_REVIEW = "under_review"
    RESOLVED = "resolved"
    CLOSED = "closed"


ACTIVE_DISPUTE_STATUSES = frozenset({DisputeStatus.OPEN, DisputeStatus.UNDER_REVIEW})
TERMINAL_DISPUTE_STATUSES = frozenset({DisputeStatus.RESOLVED, DisputeStatus.CLOSED})


class DisputeResolution(str, enum.Enum):
    FULL_REFUND = "full_refund"
    PARTIAL_REFUND = "partial_refund"
    NO_REFUND = "no_refund"
    DEPOSIT_RETURNED = "deposit_returned"
    DEPOSIT_FORFEITED = "deposit_forfeited"
    MUTUAL_AGREEMENT = "mutual_agreement"
    DISMISSED = "dismissed"


class DisputeRole(str, enum.Enum):
    """Relationship of a user to a dispute, computed by the access resolver."""

    FILER = "filer"
    COUNTERPARTY = "counterparty"
    STAFF = "staff"
    NONE = "none"


class DisputeAction(str, enum.Enum):
    READ = "read"
    READ_INTERNAL = "read_internal"
    POST_MESSAGE = "post_message"
    POST_INTERNAL_MESSAGE = "post_internal_message"
    START_REVIEW = "start_review"
    RESOLVE = "resolve"
    CLOSE = "close"


class DisputeEvent(str, enum.Enum):
    """Notification events emitted by the dispute engine."""

    FILED = "dispute_filed"
    MESSAGE = "dispute_message"
    UNDER_REVIEW = "dispute_under_review"
    RESOLVED = "dispute_resolved"
    CLOSED = "dispute_closed"


class AuditAction(str, enum.Enum):
    REVIEW_STARTED = "dispute_review_started"
    RESOLVED = "dispute_resolved"
    CLOSED = "dispute_closed"
    AUTO_CLOSED = "dispute_auto_closed"
