from checkout_core.common.logging_setup import get_logger

logger = get_logger("checkout_core.common")
