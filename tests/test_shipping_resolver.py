import unittest
from datetime import date

from gestao_ebd.application.shipping_service import ShippingResolver
from gestao_ebd.domain.shipping import add_business_days, normalize_postal_code
from gestao_ebd.errors import ValidationError
from gestao_ebd.integrations.mock import MockRemoteProcedures
from tests.helpers.fakes import FakeRemote


FRIDAY = date(2026, 10, 16)
MONDAY = date(2026, 10, 19)
ITEMS = [{"quantity": 2}, {"quantity": 1}]


def _resolver(remote=None) -> ShippingResolver:
    return ShippingResolver(
        remote or FakeRemote(),
        free_shipping_threshold=199.90,
        pickup_address="Matriz",
        pickup_hours="9h-18h",
        today_fn=lambda: MONDAY,
    )


class BusinessDaysTest(unittest.TestCase):
    def test_friday_plus_one_is_monday(self) -> None:
        self.assertEqual(add_business_days(FRIDAY, 1), MONDAY)

    def test_monday_plus_five_skips_one_weekend(self) -> None:
        self.assertEqual(add_business_days(MONDAY, 5), date(2026, 10, 26))

    def test_zero_days_is_same_day(self) -> None:
        self.assertEqual(add_business_days(FRIDAY, 0), FRIDAY)


class PostalCodeTest(unittest.TestCase):
    def test_normalization(self) -> None:
        self.assertEqual(normalize_postal_code("20040-020"), "20040020")
        self.assertIsNone(normalize_postal_code("  "))
        with self.assertRaises(ValidationError) as ctx:
            normalize_postal_code("2004")
        self.assertEqual(ctx.exception.code, "postal_code_invalid")


class ShippingResolverTest(unittest.TestCase):
    def test_free_shipping_threshold_boundary(self) -> None:
        resolver = _resolver()
        below = resolver.resolve("20040-020", ITEMS, 199.89)
        at = resolver.resolve("20040-020", ITEMS, 199.90)
        self.assertIsNone(below.option("free"))
        self.assertIsNotNone(at.option("free"))

    def test_options_with_postal_code(self) -> None:
        quote = _resolver().resolve("20040-020", ITEMS, 120.0)
        self.assertEqual([option.type for option in quote.options], ["pac", "sedex", "retirada"])
        self.assertEqual(quote.selected.type, "pac")
        pac = quote.option("pac")
        self.assertEqual(pac.cost, 22.5)
        self.assertEqual(pac.estimated_delivery, date(2026, 10, 27))
        self.assertFalse(quote.fallback)

    def test_free_shipping_is_preferred(self) -> None:
        quote = _resolver().resolve("20040020", ITEMS, 250.0)
        self.assertEqual(quote.selected.type, "free")
        self.assertEqual(quote.selected.cost, 0.0)
        self.assertIn("199,90", quote.selected.label)

    def test_without_postal_code_offers_free_and_pickup(self) -> None:
        remote = FakeRemote()
        quote = _resolver(remote).resolve(None, ITEMS, 250.0)
        self.assertEqual([option.type for option in quote.options], ["free", "retirada"])
        self.assertEqual([option.cost for option in quote.options], [0.0, 0.0])
        self.assertEqual(quote.selected.type, "free")
        self.assertEqual(remote.shipping_calls, [])

    def test_pickup_option_details(self) -> None:
        quote = _resolver().resolve(None, ITEMS, 50.0)
        pickup = quote.option("retirada")
        self.assertEqual(pickup.address, "Matriz")
        self.assertEqual(pickup.hours, "9h-18h")
        self.assertEqual(quote.selected.type, "retirada")

    def test_remote_failure_uses_fallback_rates(self) -> None:
        resolver = _resolver(FakeRemote(shipping_error="timeout"))
        with self.assertLogs("gestao_ebd", level="WARNING") as logs:
            quote = resolver.resolve("20040-020", ITEMS, 100.0)
        self.assertTrue(quote.fallback)
        self.assertIsNotNone(quote.warning)
        self.assertEqual(quote.option("pac").cost, 15.0)
        self.assertEqual(quote.option("sedex").cost, 25.0)
        self.assertEqual(quote.option("sedex").days, 3)
        self.assertTrue(any("shipping_quote_fallback" in line for line in logs.output))

    def test_invalid_postal_code_never_calls_remote(self) -> None:
        remote = FakeRemote()
        with self.assertRaises(ValidationError):
            _resolver(remote).resolve("123", ITEMS, 100.0)
        self.assertEqual(remote.shipping_calls, [])

    def test_manual_shipping(self) -> None:
        resolver = _resolver()
        option = resolver.manual("Transportadora Rapida", "35,50", "5 a 7 dias")
        self.assertEqual(option.type, "manual")
        self.assertEqual(option.cost, 35.5)
        self.assertEqual(option.carrier, "Transportadora Rapida")
        with self.assertRaises(ValidationError) as ctx:
            resolver.manual("Transportadora", "abc")
        self.assertEqual(ctx.exception.code, "shipping_cost_invalid")
        with self.assertRaises(ValidationError) as ctx:
            resolver.manual("", 10)
        self.assertEqual(ctx.exception.code, "carrier_required")

    def test_mock_remote_rates_by_region(self) -> None:
        quote = _resolver(MockRemoteProcedures()).resolve("01310-100", [{"quantity": 3}], 80.0)
        self.assertEqual(quote.option("pac").cost, 21.9)
        self.assertEqual(quote.option("sedex").days, 1)


if __name__ == "__main__":
    unittest.main()
