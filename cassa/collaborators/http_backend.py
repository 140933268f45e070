"""REST Order Backend - client for the remote order service."""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

import requests

from cassa.collaborators import (
    OrderBackend, OrderRecord, OrderItemRecord, PaymentRecord, VoucherRecord, PromotionRecord
)
from cassa.exceptions import CollaboratorCallFailure, NotFoundError
from cassa.models import StockDirection
from cassa.services.money import to_decimal

logger = logging.getLogger(__name__)


def _parse_datetime(value):
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value.replace('Z', '+00:00'))


def _money(value) -> str:
    return str(to_decimal(value))


class HttpOrderBackend(OrderBackend):
    """OrderBackend speaking JSON to the order service API."""

    def __init__(self, base_url: str, timeout: float = 10, api_token: Optional[str] = None):
        """
        Initialize the REST backend.

        Args:
            base_url: Root URL of the order service (without trailing slash)
            timeout: Per-call timeout in seconds
            api_token: Optional bearer token
        """
        if not base_url:
            raise ValueError("ORDER_API_URL is required for the http backend")

        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.headers = {'Content-Type': 'application/json'}
        if api_token:
            self.headers['Authorization'] = f'Bearer {api_token}'

    def _request(self, operation: str, method: str, path: str,
                 payload: Optional[Dict[str, Any]] = None) -> Any:
        """
        Perform one call and decode the JSON body.

        Raises:
            NotFoundError: On a 404 response
            CollaboratorCallFailure: On timeouts, connection errors and non-2xx responses
        """
        url = f"{self.base_url}{path}"
        logger.debug(f"[API] {operation}: {method} {url}")

        try:
            response = requests.request(method, url, json=payload, headers=self.headers, timeout=self.timeout)
            if response.status_code == 404:
                raise NotFoundError(f'{operation}: risorsa non trovata ({path})')
            response.raise_for_status()
        except requests.Timeout as e:
            logger.error(f"[API] {operation} timed out after {self.timeout}s")
            raise CollaboratorCallFailure(operation, f'Timeout durante {operation}') from e
        except requests.HTTPError as e:
            logger.error(f"[API] {operation} failed: {e.response.status_code} {e.response.text}")
            raise CollaboratorCallFailure(operation) from e
        except requests.RequestException as e:
            logger.error(f"[API] {operation} failed: {e}")
            raise CollaboratorCallFailure(operation) from e

        if not response.content:
            return None
        return response.json()

    # Order store

    def get_order(self, order_id: int) -> OrderRecord:
        data = self._request('get_order', 'GET', f'/api/orders/{order_id}')
        return OrderRecord(
            id=data['id'],
            code=data['code'],
            status_id=data['status_id'],
            total_price=to_decimal(data['total_price']),
            final_total=to_decimal(data['final_total']),
            tax_amount=to_decimal(data.get('tax_amount', 0)),
            warehouse_id=data.get('warehouse_id'),
        )

    def get_order_items(self, order_id: int) -> List[OrderItemRecord]:
        data = self._request('get_order_items', 'GET', f'/api/order-items/order/{order_id}')
        return [
            OrderItemRecord(
                id=item['id'],
                product_id=item['product_id'],
                quantity=int(item['quantity']),
                unit_cost=to_decimal(item['unit_cost']),
                discount=to_decimal(item.get('discount', 0)),
                final_cost=to_decimal(item['final_cost']),
            )
            for item in data or []
            if not item.get('deleted')
        ]

    def create_order(self, code: str, status_id: int, total_price: Decimal, final_total: Decimal,
                     tax_amount: Decimal, discount: Decimal, warehouse_id: int,
                     client_id: Optional[int] = None) -> int:
        data = self._request('create_order', 'POST', '/api/orders', {
            'code': code,
            'status_id': status_id,
            'total_price': _money(total_price),
            'final_total': _money(final_total),
            'tax_amount': _money(tax_amount),
            'discount': str(discount),
            'warehouse_id': warehouse_id,
            'client_id': client_id,
        })
        return data['id']

    def create_order_item(self, order_id: int, product_id: int, quantity: int, unit_cost: Decimal,
                          discount: Decimal, final_cost: Decimal, total: Decimal, tax: Decimal) -> int:
        data = self._request('create_order_item', 'POST', '/api/order-items', {
            'order_id': order_id,
            'product_id': product_id,
            'quantity': quantity,
            'unit_cost': _money(unit_cost),
            'discount': str(discount),
            'final_cost': str(final_cost),
            'total': _money(total),
            'tax': _money(tax),
        })
        return data['id']

    def update_order_status(self, order_id: int, status_id: int) -> None:
        self._request('update_order_status', 'PATCH',
                      f'/api/order-cancellation/orders/{order_id}/status', {'status_id': status_id})

    def update_order_total(self, order_id: int, final_total: Decimal, tax_amount: Decimal) -> None:
        self._request('update_order_total', 'PATCH', f'/api/orders/{order_id}', {
            'final_total': _money(final_total),
            'tax_amount': _money(tax_amount),
        })

    def soft_delete_order_items(self, order_id: int) -> None:
        self._request('soft_delete_order_items', 'PATCH',
                      f'/api/order-cancellation/order-items/{order_id}/update-deleted')

    def update_order_item_quantity(self, item_id: int, new_quantity: int) -> None:
        self._request('update_order_item_quantity', 'PATCH', f'/api/order-items/{item_id}/update', {
            'quantity': new_quantity,
            'deleted': new_quantity <= 0,
        })

    # Payment store

    def get_order_payments(self, order_id: int) -> List[PaymentRecord]:
        data = self._request('get_order_payments', 'GET', f'/api/order-payments/order/{order_id}')
        return [
            PaymentRecord(
                id=p['id'],
                amount=to_decimal(p['amount']),
                status_id=p['status_id'],
                payment_method_id=p['payment_method_id'],
            )
            for p in data or []
        ]

    def create_payment(self, order_id: int, method_id: int, amount: Decimal, tax: Decimal,
                       payment_date: datetime, charge_date: datetime, status_id: int) -> int:
        data = self._request('create_payment', 'POST', '/api/order-payments', {
            'order_id': order_id,
            'payment_method_id': method_id,
            'amount': _money(amount),
            'tax': _money(tax),
            'payment_date': payment_date.isoformat(),
            'charge_date': charge_date.isoformat() if charge_date else None,
            'status_id': status_id,
        })
        return data['id'] if data else None

    def update_payments_status(self, order_id: int, from_status: int, to_status: int) -> None:
        self._request('update_payments_status', 'PATCH',
                      f'/api/order-cancellation/order-payments/{order_id}/update-status',
                      {'from_status_id': from_status, 'to_status_id': to_status})

    def update_payment_status(self, payment_id: int, status_id: int) -> None:
        self._request('update_payment_status', 'PATCH',
                      f'/api/order-payments/{payment_id}/status', {'status_id': status_id})

    # Stock ledger

    def get_stock(self, product_id: int, warehouse_id: int) -> int:
        data = self._request('get_stock', 'GET', f'/api/product-availability/{warehouse_id}/{product_id}')
        return int(data.get('quantity', 0)) if data else 0

    def adjust_stock(self, product_id: int, warehouse_id: int, quantity: int,
                     direction: StockDirection, reference_order_id: Optional[int] = None) -> None:
        self._request('adjust_stock', 'POST', '/api/product-availability/update', {
            'product_id': product_id,
            'warehouse_id': warehouse_id,
            'quantity': quantity,
            'operation': direction.value,
            'reference_order_id': reference_order_id,
        })

    # Voucher store

    def create_voucher(self, origin_order_id: int, amount: Decimal,
                       valid_from: datetime, valid_to: datetime) -> int:
        data = self._request('create_voucher', 'POST', '/api/vouchers', {
            'origin_order_id': origin_order_id,
            'total_amount': _money(amount),
            'validity_start_date': valid_from.isoformat(),
            'validity_end_date': valid_to.isoformat(),
        })
        return data['id']

    def get_voucher(self, code: str) -> VoucherRecord:
        data = self._request('get_voucher', 'GET', f'/api/vouchers/code/{code}')
        return VoucherRecord(
            id=data['id'],
            code=data['code'],
            total_amount=to_decimal(data['total_amount']),
            used_amount=to_decimal(data.get('used_amount') or 0),
            status_id=data['status_id'],
            validity_start_date=_parse_datetime(data['validity_start_date']),
            validity_end_date=_parse_datetime(data['validity_end_date']),
            origin_order_id=data.get('origin_order_id'),
            destination_order_id=data.get('destination_order_id'),
        )

    def redeem_voucher(self, voucher_id: int, amount: Decimal, destination_order_id: int) -> None:
        self._request('redeem_voucher', 'POST', f'/api/vouchers/{voucher_id}/redeem', {
            'amount': _money(amount),
            'destination_order_id': destination_order_id,
        })

    def restore_voucher(self, voucher_id: int, amount: Decimal) -> None:
        self._request('restore_voucher', 'POST', f'/api/vouchers/{voucher_id}/restore', {
            'amount': _money(amount),
        })

    # Promotions

    def list_promotions(self) -> List[PromotionRecord]:
        data = self._request('list_promotions', 'GET', '/api/promotions')
        return [
            PromotionRecord(id=p['id'], description=p.get('description', ''), rule=p['query'])
            for p in data or []
            if p.get('active', True)
        ]
