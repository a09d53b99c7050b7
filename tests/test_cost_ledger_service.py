from __future__ import annotations

import unittest
from decimal import Decimal

from sqlalchemy import delete, select

from app.models import CalculationType, CostCategory, CostItem, ProductCostBreakdown
from app.services.cost_ledger_service import (
    CostRule,
    DerivedLedger,
    ExplicitLedger,
    LedgerEntry,
    build_cost_ledger,
    derive_cost_breakdown,
    load_cost_rules,
    merge_ledger,
    replace_cost_ledger,
    resolve_ledger,
    validate_cost_rule,
    validate_explicit_ledger,
)
from app.services.errors import InvalidLedgerError, NotFoundError
from app.services.line_item_service import NormalizedItem
from support import make_session, seed_catalog

MATERIALS = 1
LABOR = 2


class DeriveCostBreakdownTests(unittest.TestCase):
    def test_percentage_rule_is_share_of_line_value(self) -> None:
        rules = [CostRule(category_id=MATERIALS, calculation_type=CalculationType.PERCENTAGE, value=Decimal('12.5'))]
        entries = derive_cost_breakdown(rules, quantity=4, price=Decimal('20.00'))
        self.assertEqual(entries, [LedgerEntry(category_id=MATERIALS, amount=Decimal('10.000'))])

    def test_fixed_amount_rule_scales_with_quantity(self) -> None:
        rules = [CostRule(category_id=LABOR, calculation_type=CalculationType.FIXED_AMOUNT, value=Decimal('7.25'))]
        entries = derive_cost_breakdown(rules, quantity=3, price=Decimal('999.00'))
        self.assertEqual(entries[0].amount, Decimal('21.75'))

    def test_one_entry_per_rule(self) -> None:
        rules = [
            CostRule(category_id=MATERIALS, calculation_type=CalculationType.PERCENTAGE, value=Decimal('10')),
            CostRule(category_id=LABOR, calculation_type=CalculationType.FIXED_AMOUNT, value=Decimal('2')),
        ]
        entries = derive_cost_breakdown(rules, quantity=2, price=Decimal('50.00'))
        self.assertEqual([entry.category_id for entry in entries], [MATERIALS, LABOR])
        self.assertEqual([entry.amount for entry in entries], [Decimal('10'), Decimal('4')])

    def test_no_rules_yields_nothing(self) -> None:
        self.assertEqual(derive_cost_breakdown([], quantity=5, price=Decimal('1.00')), [])


class BuildCostLedgerTests(unittest.TestCase):
    RULES = {
        10: [CostRule(category_id=MATERIALS, calculation_type=CalculationType.FIXED_AMOUNT, value=Decimal('10'))],
        20: [
            CostRule(category_id=MATERIALS, calculation_type=CalculationType.PERCENTAGE, value=Decimal('5')),
            CostRule(category_id=LABOR, calculation_type=CalculationType.FIXED_AMOUNT, value=Decimal('40')),
        ],
        30: [],
    }

    def test_same_category_amounts_are_merged(self) -> None:
        items = [
            NormalizedItem(product_id=10, quantity=3, price=Decimal('100.00')),
            NormalizedItem(product_id=20, quantity=1, price=Decimal('500.00')),
        ]
        ledger = build_cost_ledger(items, self.RULES.__getitem__)
        self.assertEqual(
            ledger,
            [
                LedgerEntry(category_id=MATERIALS, amount=Decimal('55.00')),
                LedgerEntry(category_id=LABOR, amount=Decimal('40.00')),
            ],
        )

    def test_ledger_is_independent_of_item_order(self) -> None:
        items = [
            NormalizedItem(product_id=20, quantity=2, price=Decimal('33.33')),
            NormalizedItem(product_id=10, quantity=1, price=Decimal('1.00')),
            NormalizedItem(product_id=30, quantity=9, price=Decimal('5.00')),
            NormalizedItem(product_id=20, quantity=1, price=Decimal('12.10')),
        ]
        first = build_cost_ledger(items, self.RULES.__getitem__)
        again = build_cost_ledger(items, self.RULES.__getitem__)
        reversed_order = build_cost_ledger(list(reversed(items)), self.RULES.__getitem__)
        self.assertEqual(first, again)
        self.assertEqual(first, reversed_order)

    def test_rules_are_loaded_once_per_product(self) -> None:
        calls: list[int] = []

        def _loader(product_id: int) -> list[CostRule]:
            calls.append(product_id)
            return self.RULES[product_id]

        items = [NormalizedItem(product_id=10, quantity=1, price=Decimal('1.00'))] * 3
        build_cost_ledger(items, _loader)
        self.assertEqual(calls, [10])

    def test_merge_rounds_to_currency(self) -> None:
        merged = merge_ledger(
            [
                LedgerEntry(category_id=MATERIALS, amount=Decimal('0.333')),
                LedgerEntry(category_id=MATERIALS, amount=Decimal('0.333')),
            ]
        )
        self.assertEqual(merged, [LedgerEntry(category_id=MATERIALS, amount=Decimal('0.67'))])


class ValidateCostRuleTests(unittest.TestCase):
    def test_accepts_known_types(self) -> None:
        self.assertEqual(validate_cost_rule('percentage', '100'), (CalculationType.PERCENTAGE, Decimal('100')))
        self.assertEqual(validate_cost_rule('fixed_amount', 250), (CalculationType.FIXED_AMOUNT, Decimal('250')))

    def test_rejects_bad_rules(self) -> None:
        cases = [
            ('markup', '5'),
            ('percentage', 'abc'),
            ('percentage', '-1'),
            ('percentage', '100.01'),
            ('fixed_amount', 'Infinity'),
        ]
        for calculation_type, value in cases:
            with self.subTest(calculation_type=calculation_type, value=value):
                with self.assertRaises(ValueError):
                    validate_cost_rule(calculation_type, value)


class LedgerStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.catalog = seed_catalog(self.db)

    def tearDown(self) -> None:
        self.db.close()

    def _cost_items(self) -> list[tuple[int, Decimal]]:
        self.db.expire_all()
        rows = self.db.execute(
            select(CostItem.category_id, CostItem.amount)
            .where(CostItem.order_id == self.catalog.order_id)
            .order_by(CostItem.category_id)
        ).all()
        return [(row.category_id, row.amount) for row in rows]

    def test_derived_ledger_from_stored_rules(self) -> None:
        items = [
            NormalizedItem(product_id=self.catalog.product_a, quantity=3, price=Decimal('100.00')),
            NormalizedItem(product_id=self.catalog.product_b, quantity=1, price=Decimal('500.00')),
        ]
        ledger = resolve_ledger(self.db, DerivedLedger(), items)
        self.assertEqual(ledger, [LedgerEntry(category_id=self.catalog.materials_id, amount=Decimal('55.00'))])

    def test_rules_for_deleted_category_are_skipped(self) -> None:
        self.db.add(
            ProductCostBreakdown(
                product_id=self.catalog.product_a,
                category_id=self.catalog.labor_id,
                calculation_type=CalculationType.FIXED_AMOUNT,
                value=Decimal('3'),
            )
        )
        self.db.execute(delete(CostCategory).where(CostCategory.id == self.catalog.labor_id))
        self.db.commit()

        with self.assertLogs('app.services.cost_ledger_service', level='WARNING'):
            rules = load_cost_rules(self.db, self.catalog.product_a)
        self.assertEqual([rule.category_id for rule in rules], [self.catalog.materials_id])

    def test_replace_discards_previous_ledger(self) -> None:
        replace_cost_ledger(
            self.db,
            order_id=self.catalog.order_id,
            ledger=[
                LedgerEntry(category_id=self.catalog.materials_id, amount=Decimal('1.00')),
                LedgerEntry(category_id=self.catalog.labor_id, amount=Decimal('2.00')),
            ],
        )
        replace_cost_ledger(
            self.db,
            order_id=self.catalog.order_id,
            ledger=[LedgerEntry(category_id=self.catalog.materials_id, amount=Decimal('55.00'))],
        )
        self.assertEqual(self._cost_items(), [(self.catalog.materials_id, Decimal('55.00'))])

    def test_explicit_ledger_used_verbatim(self) -> None:
        ledger = resolve_ledger(
            self.db,
            ExplicitLedger([{'category_id': str(self.catalog.labor_id), 'amount': '12.5'}]),
            [NormalizedItem(product_id=self.catalog.product_a, quantity=3, price=Decimal('100.00'))],
        )
        self.assertEqual(ledger, [LedgerEntry(category_id=self.catalog.labor_id, amount=Decimal('12.50'))])

    def test_explicit_ledger_validation(self) -> None:
        with self.assertRaises(NotFoundError):
            validate_explicit_ledger(self.db, [{'category_id': 9999, 'amount': 1}])
        with self.assertRaises(InvalidLedgerError):
            validate_explicit_ledger(self.db, [{'category_id': self.catalog.labor_id, 'amount': 'lots'}])
        with self.assertRaises(InvalidLedgerError):
            validate_explicit_ledger(self.db, [{'amount': 1}])
        with self.assertRaises(InvalidLedgerError):
            validate_explicit_ledger(
                self.db,
                [
                    {'category_id': self.catalog.labor_id, 'amount': 1},
                    {'category_id': self.catalog.labor_id, 'amount': 2},
                ],
            )
        with self.assertRaises(InvalidLedgerError):
            validate_explicit_ledger(self.db, [{'category_id': self.catalog.labor_id, 'amount': '1e40'}])
        with self.assertRaises(InvalidLedgerError):
            validate_explicit_ledger(self.db, [{'category_id': '99999999999999999999', 'amount': 1}])


if __name__ == '__main__':
    unittest.main()
