"""
Promotion rules.

A promotion is stored as text:

    WHERE (price >= 50 AND brand_id = 3) (COUNT(*) >= 3) THEN APPLY_DISCOUNT(PERCENT, 100, CHEAPEST)

The optional first group holds product predicates (which lines are
eligible), the optional second group cart predicates (whether the
promotion fires at all). Text is parsed once into a PromotionRule and the
rule is evaluated against the cart as many times as needed.
"""
import logging
import operator
import re
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from typing import Iterable, List, Optional, Tuple

from cassa.exceptions import PromotionSyntaxError
from cassa.services.cart import Cart, CartLine
from cassa.services.money import ZERO, HUNDRED, to_decimal, round_percent, discount_from_prices

logger = logging.getLogger(__name__)

OPERATORS = {
    '>=': operator.ge,
    '<=': operator.le,
    '>': operator.gt,
    '<': operator.lt,
    '=': operator.eq,
    '!=': operator.ne,
}

_OP = r'(>=|<=|!=|=|>|<)'
_NUM = r'(\d+(?:\.\d+)?)'
_PREDICATES = [
    ('cart', 'count', re.compile(rf'^COUNT\(\*\)\s*{_OP}\s*(\d+)$')),
    ('cart', 'total', re.compile(rf'^SUM\(price\)\s*{_OP}\s*{_NUM}$')),
    ('product', 'price', re.compile(rf'^price\s*{_OP}\s*{_NUM}$')),
    ('product', 'quantity', re.compile(rf'^quantity\s*{_OP}\s*(\d+)$')),
    ('product', 'brand_id', re.compile(r'^brand_id\s*(!=|=)\s*(\d+)$')),
]
_ACTION = re.compile(
    r'^APPLY_DISCOUNT\(\s*(PERCENT|FIXED)\s*,\s*(\d+(?:\.\d+)?)\s*,\s*(ALL|CHEAPEST|FROM_N)(?:\s*,\s*(\d+))?\s*\)$'
)


@dataclass(frozen=True)
class Predicate:
    scope: str      # 'product' | 'cart'
    field: str
    op: str
    value: Decimal

    def holds(self, actual) -> bool:
        if actual is None:
            return self.op == '!='
        return OPERATORS[self.op](to_decimal(actual), self.value)


@dataclass(frozen=True)
class ConditionGroup:
    joiner: str     # 'AND' | 'OR'
    predicates: Tuple[Predicate, ...]

    def holds(self, resolve) -> bool:
        results = (p.holds(resolve(p)) for p in self.predicates)
        return any(results) if self.joiner == 'OR' else all(results)


@dataclass(frozen=True)
class DiscountAction:
    kind: str       # 'PERCENT' | 'FIXED'
    value: Decimal
    target: str     # 'ALL' | 'CHEAPEST' | 'FROM_N'
    n: Optional[int] = None

    def percent_for(self, list_price: Decimal) -> Decimal:
        if self.kind == 'PERCENT':
            return round_percent(self.value)
        return discount_from_prices(list_price, max(list_price - self.value, ZERO))

    def targets(self, lines: List[CartLine]) -> List[Tuple[CartLine, int]]:
        """
        Units the action discounts, as (line, unit index) pairs.

        ALL takes every unit. CHEAPEST takes a single unit of the line with
        the lowest list price, not the whole line. FROM_N takes the units from
        the n-th most expensive onwards.
        """
        if not lines:
            return []
        if self.target == 'ALL':
            return [(line, i) for line in lines for i in range(line.quantity)]
        if self.target == 'CHEAPEST':
            cheapest = min(lines, key=lambda line: line.unit_list_price)
            return [(cheapest, 0)]
        ranked = sorted(
            ((line, i) for line in lines for i in range(line.quantity)),
            key=lambda unit: unit[0].unit_list_price,
            reverse=True,
        )
        return ranked[self.n - 1:]


@dataclass(frozen=True)
class PromotionRule:
    """Typed form of a promotion's rule text."""
    text: str
    product_conditions: Optional[ConditionGroup]
    cart_conditions: Optional[ConditionGroup]
    actions: Tuple[DiscountAction, ...]

    def eligible_lines(self, cart: Cart) -> List[CartLine]:
        editable = [line for line in cart.lines if not line.is_from_reservation and line.quantity]
        if not self.product_conditions:
            return editable
        return [
            line for line in editable
            if self.product_conditions.holds(lambda p: _line_value(line, p.field))
        ]

    def matches(self, cart: Cart) -> bool:
        if self.cart_conditions and not self.cart_conditions.holds(lambda p: _cart_value(cart, p.field)):
            return False
        return bool(self.eligible_lines(cart))

    def apply(self, cart: Cart) -> int:
        """Raise unit discounts to this rule's values; returns units touched."""
        lines = self.eligible_lines(cart)
        touched = 0
        for action in self.actions:
            for line, index in action.targets(lines):
                percent = action.percent_for(line.unit_list_price)
                if percent > line.unit_discounts[index]:
                    discounts = list(line.unit_discounts)
                    discounts[index] = percent
                    line.unit_discounts = discounts
                    touched += 1
        return touched


def _line_value(line: CartLine, field: str):
    if field == 'price':
        return line.unit_list_price
    if field == 'quantity':
        return line.quantity
    return line.brand_id


def _cart_value(cart: Cart, field: str):
    if field == 'count':
        return cart.total_quantity
    return cart.base_total


def _split_groups(text: str) -> List[str]:
    """Top-level parenthesised groups, or the whole text when there are none."""
    groups, depth, start = [], 0, None
    for i, ch in enumerate(text):
        if ch == '(':
            if depth == 0:
                start = i
            depth += 1
        elif ch == ')':
            depth -= 1
            if depth < 0:
                raise ValueError('parentesi non bilanciate')
            if depth == 0:
                groups.append(text[start + 1:i].strip())
    if depth != 0:
        raise ValueError('parentesi non bilanciate')
    outside = re.sub(r'\((?:[^()]|\([^()]*\))*\)', '', text).replace('AND', '').strip()
    if not groups or outside:
        # Bare predicates such as "COUNT(*) >= 3"
        return [text.strip()]
    return groups


def _parse_group(text: str) -> Tuple[str, List[Predicate]]:
    joiner = 'OR' if ' OR ' in text else 'AND'
    predicates = []
    for raw in text.split(f' {joiner} '):
        raw = raw.strip()
        for scope, field, pattern in _PREDICATES:
            match = pattern.match(raw)
            if match:
                predicates.append(Predicate(scope, field, match.group(1), to_decimal(match.group(2))))
                break
        else:
            raise ValueError(f'condizione sconosciuta {raw!r}')
    return joiner, predicates


def _parse_action(text: str) -> DiscountAction:
    match = _ACTION.match(text.strip())
    if not match:
        raise ValueError(f'azione sconosciuta {text.strip()!r}')
    kind, value, target, n = match.groups()
    value = to_decimal(value)
    if kind == 'PERCENT' and value > HUNDRED:
        raise ValueError('percentuale oltre 100')
    if target == 'FROM_N':
        if not n or int(n) < 1:
            raise ValueError('FROM_N richiede una posizione >= 1')
        return DiscountAction(kind, value, target, int(n))
    return DiscountAction(kind, value, target)


@lru_cache(maxsize=256)
def parse_promotion(text: str) -> PromotionRule:
    """Parse rule text into a PromotionRule (cached per distinct text)."""
    source = (text or '').strip()
    if not source.startswith('WHERE ') or ' THEN ' not in source:
        raise PromotionSyntaxError(text, 'attesa forma WHERE ... THEN ...')
    conditions_text, actions_text = source[len('WHERE '):].split(' THEN ', 1)

    try:
        product, cart = [], []
        product_joiner = cart_joiner = 'AND'
        for group in _split_groups(conditions_text):
            joiner, predicates = _parse_group(group)
            if any(p.scope == 'product' for p in predicates):
                product_joiner = joiner
            if any(p.scope == 'cart' for p in predicates):
                cart_joiner = joiner
            product.extend(p for p in predicates if p.scope == 'product')
            cart.extend(p for p in predicates if p.scope == 'cart')
        actions = tuple(_parse_action(part) for part in actions_text.split(' AND '))
    except ValueError as e:
        raise PromotionSyntaxError(text, str(e)) from e

    return PromotionRule(
        text=source,
        product_conditions=ConditionGroup(product_joiner, tuple(product)) if product else None,
        cart_conditions=ConditionGroup(cart_joiner, tuple(cart)) if cart else None,
        actions=actions,
    )


def reset_discounts(cart: Cart) -> None:
    for line in cart.lines:
        if not line.is_from_reservation:
            line.unit_discounts = [ZERO] * line.quantity


def evaluate_promotions(cart: Cart, rules: Iterable[PromotionRule]) -> List[PromotionRule]:
    """
    Recompute promotional discounts from scratch.

    Editable lines are reset to no discount, then every rule whose
    conditions hold is applied. Running it again on the same cart gives
    the same discounts.
    """
    reset_discounts(cart)
    applied = []
    for rule in rules:
        if rule.matches(cart):
            touched = rule.apply(cart)
            applied.append(rule)
            logger.info(f"[PROMO] Applied {rule.text!r} to {touched} unit(s)")
    return applied


def evaluate_promotion(cart: Cart, rule_text: str) -> bool:
    """Evaluate a single promotion record's rule text."""
    return bool(evaluate_promotions(cart, [parse_promotion(rule_text)]))
