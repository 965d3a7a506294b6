from decimal import Decimal

from checkout_core.shipping.services import ShippingCalculator
from tests.helpers import DELIVERY_ADDRESS, PICKUP_ADDRESS

calc = ShippingCalculator(standard_cost=Decimal("10000"), free_threshold=Decimal("120000"))


def test_pickup_is_always_free():
    quote = calc.calculate_shipping(PICKUP_ADDRESS, Decimal("10"))
    assert quote.cost == 0
    assert quote.is_free is True
    assert quote.method == "pickup"


def test_delivery_below_threshold_pays_standard_cost():
    quote = calc.calculate_shipping(DELIVERY_ADDRESS, Decimal("119999.99"))
    assert quote.cost == Decimal("10000")
    assert quote.is_free is False
    assert quote.method == "standard"


def test_threshold_is_inclusive():
    assert calc.calculate_shipping(DELIVERY_ADDRESS, Decimal("120000")).is_free is True


def test_discounts_count_against_threshold():
    quote = calc.calculate_shipping(DELIVERY_ADDRESS, Decimal("125000"), discounts=Decimal("5000.01"))
    assert quote.is_free is False
    assert quote.cost == Decimal("10000")
