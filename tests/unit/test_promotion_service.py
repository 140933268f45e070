"""
Unit tests for promotion rule parsing and evaluation.
"""

from decimal import Decimal

import pytest

from cassa.exceptions import PromotionSyntaxError
from cassa.services.cart import Cart, CartLine
from cassa.services.promotion_service import (
    parse_promotion, evaluate_promotions, evaluate_promotion
)


def line(product_id, price, quantity=1, brand_id=None, discount=0, reservation=False):
    return CartLine(
        product_id=product_id,
        unit_list_price=Decimal(str(price)),
        unit_discounts=[Decimal(str(discount))] * quantity,
        brand_id=brand_id,
        is_from_reservation=reservation,
    )


class TestParsing:
    """Tests for rule text parsing."""

    def test_product_and_cart_groups(self):
        rule = parse_promotion(
            'WHERE (price >= 50 AND brand_id = 3) (COUNT(*) >= 3) THEN APPLY_DISCOUNT(PERCENT, 100, CHEAPEST)'
        )
        assert [p.field for p in rule.product_conditions.predicates] == ['price', 'brand_id']
        assert rule.cart_conditions.predicates[0].field == 'count'
        assert rule.actions[0].target == 'CHEAPEST'

    def test_bare_predicate(self):
        rule = parse_promotion('WHERE COUNT(*) >= 2 THEN APPLY_DISCOUNT(PERCENT, 10, ALL)')
        assert rule.product_conditions is None
        assert rule.cart_conditions.predicates[0].value == Decimal('2')

    def test_multiple_actions(self):
        rule = parse_promotion(
            'WHERE (SUM(price) > 100) THEN APPLY_DISCOUNT(PERCENT, 5, ALL) AND APPLY_DISCOUNT(FIXED, 10, FROM_N, 3)'
        )
        assert len(rule.actions) == 2
        assert rule.actions[1].n == 3

    def test_parsed_once(self):
        text = 'WHERE (price > 1) THEN APPLY_DISCOUNT(PERCENT, 10, ALL)'
        assert parse_promotion(text) is parse_promotion(text)

    @pytest.mark.parametrize('text', [
        'APPLY_DISCOUNT(PERCENT, 10, ALL)',
        'WHERE (price >> 3) THEN APPLY_DISCOUNT(PERCENT, 10, ALL)',
        'WHERE (price > 3 THEN APPLY_DISCOUNT(PERCENT, 10, ALL)',
        'WHERE (price > 3) THEN APPLY_DISCOUNT(PERCENT, 150, ALL)',
        'WHERE (price > 3) THEN APPLY_DISCOUNT(PERCENT, 10, FROM_N)',
        'WHERE (colour = 3) THEN APPLY_DISCOUNT(PERCENT, 10, ALL)',
    ])
    def test_malformed_rules(self, text):
        with pytest.raises(PromotionSyntaxError):
            parse_promotion(text)


class TestEvaluation:
    """Tests for applying promotions to a cart."""

    def test_cheapest_unit_free(self):
        cart = Cart(lines=[line(1, 30), line(2, 20), line(3, 10)])
        rule = 'WHERE (COUNT(*) >= 3) THEN APPLY_DISCOUNT(PERCENT, 100, CHEAPEST)'

        assert evaluate_promotion(cart, rule)

        assert cart.lines[2].unit_discounts == [Decimal('100')]
        assert cart.lines[0].unit_discounts == [Decimal('0')]
        assert cart.final_total == Decimal('50')

    def test_cheapest_discounts_a_single_unit(self):
        cart = Cart(lines=[line(1, 10, quantity=2), line(2, 40)])
        evaluate_promotion(cart, 'WHERE (COUNT(*) >= 3) THEN APPLY_DISCOUNT(PERCENT, 100, CHEAPEST)')
        assert cart.lines[0].unit_discounts == [Decimal('100'), Decimal('0')]

    def test_cart_condition_gates_promotion(self):
        cart = Cart(lines=[line(1, 20), line(2, 30)])
        assert not evaluate_promotion(cart, 'WHERE (SUM(price) >= 100) THEN APPLY_DISCOUNT(PERCENT, 10, ALL)')
        assert all(d == 0 for item in cart.lines for d in item.unit_discounts)

    def test_from_n_ranks_eligible_units_by_price(self):
        cart = Cart(lines=[line(1, 30), line(2, 20), line(3, 5)])
        evaluate_promotion(cart, 'WHERE (price >= 10) THEN APPLY_DISCOUNT(PERCENT, 50, FROM_N, 2)')
        assert cart.lines[0].unit_discounts == [Decimal('0')]
        assert cart.lines[1].unit_discounts == [Decimal('50')]
        assert cart.lines[2].unit_discounts == [Decimal('0')]

    def test_fixed_amount_becomes_percentage(self):
        cart = Cart(lines=[line(1, 20, brand_id=3), line(2, 20, brand_id=4)])
        evaluate_promotion(cart, 'WHERE (brand_id = 3) THEN APPLY_DISCOUNT(FIXED, 5, ALL)')
        assert cart.lines[0].unit_discounts == [Decimal('25')]
        assert cart.lines[1].unit_discounts == [Decimal('0')]

    def test_or_group(self):
        cart = Cart(lines=[line(1, 20, brand_id=1), line(2, 20, brand_id=2), line(3, 20, brand_id=5)])
        evaluate_promotion(cart, 'WHERE (brand_id = 1 OR brand_id = 2) THEN APPLY_DISCOUNT(PERCENT, 10, ALL)')
        assert [item.row_discount for item in cart.lines] == [Decimal('10'), Decimal('10'), Decimal('0')]

    def test_highest_discount_wins(self):
        cart = Cart(lines=[line(1, 20, quantity=2)])
        rules = [
            parse_promotion('WHERE (price > 0) THEN APPLY_DISCOUNT(PERCENT, 30, ALL)'),
            parse_promotion('WHERE (price > 0) THEN APPLY_DISCOUNT(PERCENT, 10, ALL)'),
        ]
        evaluate_promotions(cart, rules)
        assert cart.lines[0].unit_discounts == [Decimal('30'), Decimal('30')]

    def test_evaluation_is_idempotent(self):
        cart = Cart(lines=[line(1, 30), line(2, 20, quantity=2), line(3, 10)])
        rules = [
            parse_promotion('WHERE (COUNT(*) >= 3) THEN APPLY_DISCOUNT(PERCENT, 100, CHEAPEST)'),
            parse_promotion('WHERE (price >= 20) THEN APPLY_DISCOUNT(PERCENT, 10, ALL)'),
        ]
        evaluate_promotions(cart, rules)
        first = [list(item.unit_discounts) for item in cart.lines]

        evaluate_promotions(cart, rules)

        assert [item.unit_discounts for item in cart.lines] == first

    def test_manual_discounts_are_reset(self):
        cart = Cart(lines=[line(1, 20, discount=15)])
        evaluate_promotions(cart, [])
        assert cart.lines[0].unit_discounts == [Decimal('0')]

    def test_reservation_lines_untouched(self):
        cart = Cart(lines=[line(1, 20, discount=15, reservation=True), line(2, 20)])
        evaluate_promotion(cart, 'WHERE (price > 0) THEN APPLY_DISCOUNT(PERCENT, 50, ALL)')
        assert cart.lines[0].unit_discounts == [Decimal('15')]
        assert cart.lines[1].unit_discounts == [Decimal('50')]
