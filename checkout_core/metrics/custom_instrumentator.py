from prometheus_client import Counter
from prometheus_fastapi_instrumentator import Instrumentator

instrumentator = Instrumentator(
    should_ignore_untemplated=True,      # /checkout/abc → /checkout/{token}
    excluded_handlers=["/metrics"],
    should_instrument_requests_inprogress=False,
    should_group_status_codes=False,
)

reservation_attempts = Counter(
    "checkout_reservation_attempts_total",
    "Reservation attempts by outcome",
    ["outcome"],
)

reconcile_outcomes = Counter(
    "checkout_reconcile_outcomes_total",
    "Payment reconciliation outcomes by trigger and status",
    ["trigger", "status"],
)

sweeper_rows = Counter(
    "checkout_sweeper_rows_total",
    "Rows touched by the expiration sweeper and retention job",
    ["kind"],
)
