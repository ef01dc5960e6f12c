"""Entity and report catalogue for the QuickBooks Online accounting API.

Every record type the client can reach is described once here; the client
derives URL segments, response keys, convenience method names and update
rules from these rows instead of carrying one method per entity.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional

from qbo_accounting.errors import PreconditionError

CREATE = "create"
GET = "get"
UPDATE = "update"
DELETE = "delete"
FIND = "find"

VERBS = (CREATE, GET, UPDATE, DELETE, FIND)

_VERB_CODES = {"C": CREATE, "G": GET, "U": UPDATE, "D": DELETE, "F": FIND}

# Void is sent as ?operation=void for invoices and ?include=void elsewhere.
VOID_OPERATION = "operation"
VOID_INCLUDE = "include"


@dataclass(frozen=True)
class EntitySpec:
    name: str
    plural: str
    verbs: FrozenSet[str]
    requires_sync_token: bool = True
    void_mode: Optional[str] = None
    has_pdf: bool = False

    @property
    def path(self) -> str:
        return self.name.lower()

    def supports(self, verb: str) -> bool:
        return verb in self.verbs


def _entity(
    name: str,
    plural: str,
    verbs: str,
    *,
    requires_sync_token: bool = True,
    void_mode: Optional[str] = None,
    has_pdf: bool = False,
) -> EntitySpec:
    return EntitySpec(
        name=name,
        plural=plural,
        verbs=frozenset(_VERB_CODES[code] for code in verbs),
        requires_sync_token=requires_sync_token,
        void_mode=void_mode,
        has_pdf=has_pdf,
    )


ENTITIES: List[EntitySpec] = [
    _entity("Account", "Accounts", "CGUF"),
    _entity("Attachable", "Attachables", "CGUDF"),
    _entity("Bill", "Bills", "CGUDF"),
    _entity("BillPayment", "BillPayments", "CGUDF", void_mode=VOID_INCLUDE),
    _entity("Budget", "Budgets", "F"),
    _entity("Class", "Classes", "CGUF"),
    _entity("CompanyInfo", "CompanyInfos", "GUF"),
    _entity("CreditMemo", "CreditMemos", "CGUDF", has_pdf=True),
    _entity("Customer", "Customers", "CGUF"),
    _entity("Department", "Departments", "CGUF"),
    _entity("Deposit", "Deposits", "CGUDF"),
    _entity("Employee", "Employees", "CGUF"),
    _entity("Estimate", "Estimates", "CGUDF", has_pdf=True),
    _entity("ExchangeRate", "ExchangeRates", "GUF", requires_sync_token=False),
    _entity("Invoice", "Invoices", "CGUDF", void_mode=VOID_OPERATION, has_pdf=True),
    _entity("Item", "Items", "CGUF"),
    _entity("JournalCode", "JournalCodes", "CGUDF"),
    _entity("JournalEntry", "JournalEntries", "CGUDF"),
    _entity("Payment", "Payments", "CGUDF", void_mode=VOID_INCLUDE),
    _entity("PaymentMethod", "PaymentMethods", "CGUF"),
    _entity("Preferences", "Preferences", "GUF"),
    _entity("Purchase", "Purchases", "CGUDF"),
    _entity("PurchaseOrder", "PurchaseOrders", "CGUDF", has_pdf=True),
    _entity("RefundReceipt", "RefundReceipts", "CGUDF", has_pdf=True),
    _entity("Reports", "Reports", "G"),
    _entity("SalesReceipt", "SalesReceipts", "CGUDF", void_mode=VOID_INCLUDE, has_pdf=True),
    _entity("TaxAgency", "TaxAgencies", "CGUF"),
    _entity("TaxCode", "TaxCodes", "GUF"),
    _entity("TaxRate", "TaxRates", "GUF"),
    _entity("TaxService", "TaxServices", "CU"),
    _entity("Term", "Terms", "CGUF"),
    _entity("TimeActivity", "TimeActivities", "CGUDF"),
    _entity("Transfer", "Transfers", "CUD"),
    _entity("Vendor", "Vendors", "CGUF"),
    _entity("VendorCredit", "VendorCredits", "CGUDF"),
]

REPORTS: List[str] = [
    "AccountList",
    "AgedPayableDetail",
    "AgedPayables",
    "AgedReceivableDetail",
    "AgedReceivables",
    "BalanceSheet",
    "CashFlow",
    "CustomerBalance",
    "CustomerBalanceDetail",
    "CustomerIncome",
    "FECReport",
    "GeneralLedger",
    "GeneralLedgerFR",
    "InventoryValuationSummary",
    "JournalReport",
    "ProfitAndLoss",
    "ProfitAndLossDetail",
    "ClassSales",
    "CustomerSales",
    "DepartmentSales",
    "ItemSales",
    "TaxSummary",
    "TransactionList",
    "TransactionListByCustomer",
    "TransactionListByVendor",
    "TransactionListWithSplits",
    "TrialBalance",
    "VendorBalance",
    "VendorBalanceDetail",
    "VendorExpenses",
]


def snake_case(name: str) -> str:
    """``JournalEntry`` -> ``journal_entry``, ``FECReport`` -> ``fec_report``."""
    name = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", name)
    name = re.sub(r"([a-z\d])([A-Z])", r"\1_\2", name)
    return name.lower()


def _lookup_key(name: str) -> str:
    return name.replace("_", "").replace("-", "").lower()


_BY_NAME: Dict[str, EntitySpec] = {_lookup_key(spec.name): spec for spec in ENTITIES}
_BY_PLURAL: Dict[str, EntitySpec] = {_lookup_key(spec.plural): spec for spec in ENTITIES}
_REPORTS_BY_NAME: Dict[str, str] = {_lookup_key(report): report for report in REPORTS}


def resolve_entity(name: str, verb: Optional[str] = None) -> EntitySpec:
    """Look up an entity by any spelling of its name and check ``verb`` is allowed."""
    spec = _BY_NAME.get(_lookup_key(str(name)))
    if spec is None:
        raise PreconditionError(f"Unknown entity: {name}")
    if verb is not None and not spec.supports(verb):
        raise PreconditionError(f"{spec.name} does not support {verb}")
    return spec


def resolve_plural(name: str) -> Optional[EntitySpec]:
    return _BY_PLURAL.get(_lookup_key(name))


def resolve_report(name: str) -> str:
    report = _REPORTS_BY_NAME.get(_lookup_key(str(name)))
    if report is None:
        raise PreconditionError(f"Unknown report: {name}")
    return report
