from plotshare.models.audit_log import AuditLog
from plotshare.models.booking import Booking
from plotshare.models.dispute import Dispute
from plotshare.models.dispute_message import DisputeMessage
from plotshare.models.user import User

__all__ = [
    "AuditLog",
    "Booking",
    "Dispute",
    "DisputeMessage",
    "User",
]
