APPROVED = "approved"
PENDING = "pending"
IN_PROCESS = "in_process"
REJECTED = "rejected"
CANCELLED = "cancelled"
UNKNOWN = "unknown"

KNOWN_STATUSES = frozenset((APPROVED, PENDING, IN_PROCESS, REJECTED, CANCELLED))
WAITING_STATUSES = frozenset((PENDING, IN_PROCESS))
FAILED_STATUSES = frozenset((REJECTED, CANCELLED))

TRIGGER_CLIENT = "client_confirm"
TRIGGER_WEBHOOK = "webhook"
