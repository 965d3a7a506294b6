import logging

logger = logging.getLogger("checkout_core")
