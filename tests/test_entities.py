import unittest

from qbo_accounting import entities
from qbo_accounting.errors import PreconditionError


class ResolveEntityTests(unittest.TestCase):
    def test_any_spelling(self) -> None:
        for name in ("JournalEntry", "journalEntry", "journal_entry", "JOURNALENTRY"):
            with self.subTest(name=name):
                spec = entities.resolve_entity(name)
                self.assertEqual(spec.name, "JournalEntry")
                self.assertEqual(spec.path, "journalentry")

    def test_verb_check(self) -> None:
        self.assertEqual(entities.resolve_entity("Budget", entities.FIND).name, "Budget")
        with self.assertRaisesRegex(PreconditionError, "Budget does not support get"):
            entities.resolve_entity("Budget", entities.GET)

    def test_unknown(self) -> None:
        with self.assertRaisesRegex(PreconditionError, "Unknown entity"):
            entities.resolve_entity("Spaceship")

    def test_plural(self) -> None:
        self.assertEqual(entities.resolve_plural("tax_agencies").name, "TaxAgency")
        self.assertEqual(entities.resolve_plural("Preferences").name, "Preferences")
        self.assertIsNone(entities.resolve_plural("spaceships"))

    def test_exchange_rate_has_no_sync_token(self) -> None:
        self.assertFalse(entities.resolve_entity("exchangerate").requires_sync_token)
        self.assertTrue(entities.resolve_entity("Invoice").requires_sync_token)

    def test_void_modes(self) -> None:
        self.assertEqual(entities.resolve_entity("Invoice").void_mode, entities.VOID_OPERATION)
        for name in ("Payment", "SalesReceipt", "BillPayment"):
            self.assertEqual(entities.resolve_entity(name).void_mode, entities.VOID_INCLUDE)
        self.assertIsNone(entities.resolve_entity("Bill").void_mode)

    def test_catalogue_is_unique(self) -> None:
        names = [spec.name.lower() for spec in entities.ENTITIES]
        self.assertEqual(len(names), len(set(names)))
        self.assertEqual(len(entities.REPORTS), len(set(entities.REPORTS)))


class ReportTests(unittest.TestCase):
    def test_resolve_report(self) -> None:
        self.assertEqual(entities.resolve_report("profit_and_loss"), "ProfitAndLoss")
        self.assertEqual(entities.resolve_report("GeneralLedgerFR"), "GeneralLedgerFR")
        with self.assertRaises(PreconditionError):
            entities.resolve_report("Horoscope")

    def test_snake_case(self) -> None:
        self.assertEqual(entities.snake_case("JournalEntry"), "journal_entry")
        self.assertEqual(entities.snake_case("FECReport"), "fec_report")
        self.assertEqual(entities.snake_case("GeneralLedgerFR"), "general_ledger_fr")
        self.assertEqual(entities.snake_case("TransactionListByVendor"), "transaction_list_by_vendor")


if __name__ == "__main__":
    unittest.main()
