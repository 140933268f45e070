"""
Integration tests for the POS blueprint.
"""

from decimal import Decimal

import pytest

from cassa.models import Order, OrderItem, OrderStatus, ProductStock, Promotion

TERMINAL = {'X-Terminal-Id': 'cassa-test'}


@pytest.fixture
def stock(session):
    session.add_all([
        ProductStock(product_id=1, warehouse_id=1, on_hand_qty=10),
        ProductStock(product_id=2, warehouse_id=1, on_hand_qty=10),
    ])
    session.commit()


def add_line(client, product_id, list_price, **extra):
    payload = {'product_id': product_id, 'list_price': list_price}
    payload.update(extra)
    return client.post('/pos/cart/lines', json=payload, headers=TERMINAL)


class TestCartRoutes:
    """Tests for cart editing over HTTP."""

    def test_add_line_and_read_cart(self, client):
        response = add_line(client, 1, '10.00')
        assert response.status_code == 201
        row_id = response.get_json()['row_id']

        add_line(client, 1, '10.00')
        cart = client.get('/pos/cart', headers=TERMINAL).get_json()['cart']

        assert len(cart['lines']) == 1
        assert cart['lines'][0]['row_id'] == row_id
        assert cart['lines'][0]['quantity'] == 2
        assert cart['final_total'] == '20.00'

    def test_terminals_are_isolated(self, client):
        add_line(client, 1, '10.00')
        other = client.get('/pos/cart', headers={'X-Terminal-Id': 'cassa-other'}).get_json()
        assert other['cart']['lines'] == []

    def test_row_discount(self, client):
        row_id = add_line(client, 1, '10.00').get_json()['row_id']
        add_line(client, 1, '10.00')

        response = client.patch(f'/pos/cart/lines/{row_id}', json={'row_discount': 50}, headers=TERMINAL)

        assert response.status_code == 200
        line = response.get_json()['cart']['lines'][0]
        assert line['row_total'] == '10.00'
        assert response.get_json()['cart']['final_total'] == '10.00'

    def test_invalid_discount_is_a_validation_error(self, client):
        row_id = add_line(client, 1, '10.00').get_json()['row_id']

        response = client.patch(f'/pos/cart/lines/{row_id}', json={'row_discount': 150}, headers=TERMINAL)

        assert response.status_code == 400
        body = response.get_json()
        assert body['status'] == 'error'
        assert body['notification']['level'] == 'error'

    @pytest.mark.parametrize('value', ['NaN', 'Infinity'])
    def test_non_finite_discount_is_a_validation_error(self, client, value):
        row_id = add_line(client, 1, '10.00').get_json()['row_id']

        response = client.patch(f'/pos/cart/lines/{row_id}', json={'row_discount': value}, headers=TERMINAL)

        assert response.status_code == 400
        assert response.get_json()['notification']['level'] == 'error'

    def test_non_finite_order_total(self, client):
        add_line(client, 1, '10.00')
        response = client.post('/pos/cart/order-total', json={'total': 'Infinity'}, headers=TERMINAL)
        assert response.status_code == 400

    def test_empty_edit_rejected(self, client):
        row_id = add_line(client, 1, '10.00').get_json()['row_id']
        response = client.patch(f'/pos/cart/lines/{row_id}', json={}, headers=TERMINAL)
        assert response.status_code == 400

    def test_delete_line(self, client):
        row_id = add_line(client, 1, '10.00').get_json()['row_id']
        response = client.delete(f'/pos/cart/lines/{row_id}', headers=TERMINAL)
        assert response.get_json()['cart']['lines'] == []

    def test_promotions_from_database(self, client, session):
        session.add(Promotion(
            description='10% da 2 pezzi',
            rule='WHERE COUNT(*) >= 2 THEN APPLY_DISCOUNT(PERCENT, 10, ALL)',
        ))
        session.commit()
        add_line(client, 1, '10.00')
        add_line(client, 2, '10.00')

        response = client.post('/pos/cart/promotions', headers=TERMINAL)

        assert response.status_code == 200
        assert len(response.get_json()['applied_promotions']) == 1
        assert response.get_json()['cart']['final_total'] == '18.00'


class TestFrozenRoutes:
    """Tests for freezing and restoring carts."""

    def test_fourth_freeze_rejected(self, client):
        for product_id in (1, 2, 3):
            add_line(client, product_id, '5.00')
            assert client.post('/pos/frozen', headers=TERMINAL).status_code == 201

        add_line(client, 4, '5.00')
        response = client.post('/pos/frozen', headers=TERMINAL)

        assert response.status_code == 409
        assert 'notification' in response.get_json()
        frozen = client.get('/pos/frozen', headers=TERMINAL).get_json()['frozen_orders']
        assert len(frozen) == 3

    def test_restore(self, client):
        add_line(client, 1, '5.00')
        frozen_id = client.post('/pos/frozen', headers=TERMINAL).get_json()['frozen_id']

        response = client.post(f'/pos/frozen/{frozen_id}/restore', headers=TERMINAL)

        body = response.get_json()
        assert body['frozen_orders'] == []
        assert body['cart']['lines'][0]['product_id'] == 1


class TestCheckoutRoutes:
    """Tests for checkout, cancellation and returns."""

    def test_checkout_settles_and_decrements_stock(self, client, session, stock):
        add_line(client, 1, '10.00')
        add_line(client, 2, '20.00')

        response = client.post('/pos/checkout', json={'payments': {'1': '30.00'}}, headers=TERMINAL)

        assert response.status_code == 201
        body = response.get_json()
        assert body['order']['status'] == 'SETTLED'
        assert body['notification']['level'] == 'success'
        assert body['cart']['lines'] == []

        order = session.get(Order, body['order']['order_id'])
        assert order.status_id == OrderStatus.SETTLED
        assert session.get(ProductStock, (1, 1)).on_hand_qty == 9

    def test_checkout_without_stock(self, client, session):
        add_line(client, 1, '10.00')

        response = client.post('/pos/checkout', json={'payments': {'1': '10.00'}}, headers=TERMINAL)

        assert response.status_code == 409
        assert session.query(Order).count() == 0
        cart = client.get('/pos/cart', headers=TERMINAL).get_json()['cart']
        assert len(cart['lines']) == 1

    def test_partial_checkout_then_cancel(self, client, session, stock):
        add_line(client, 1, '100.00')
        order_id = client.post(
            '/pos/checkout', json={'payments': {'1': '40.00'}}, headers=TERMINAL
        ).get_json()['order']['order_id']
        assert session.get(Order, order_id).status_id == OrderStatus.PARTIALLY_PAID

        response = client.post(
            f'/pos/orders/{order_id}/cancel',
            json={'refund_method': 'voucher', 'deposit_amount': '40.00'},
            headers=TERMINAL,
        )

        assert response.status_code == 200
        result = response.get_json()['result']
        assert result['voucher_id'] is not None
        assert session.get(Order, order_id).status_id == OrderStatus.CANCELLED
        assert session.get(ProductStock, (1, 1)).on_hand_qty == 10

    def test_return(self, client, session, stock):
        add_line(client, 1, '10.00')
        add_line(client, 1, '10.00')
        order_id = client.post(
            '/pos/checkout', json={'payments': {'1': '20.00'}}, headers=TERMINAL
        ).get_json()['order']['order_id']
        item = session.query(OrderItem).filter(OrderItem.order_id == order_id).first()

        response = client.post(
            f'/pos/orders/{order_id}/return',
            json={'refund_method': 'cash', 'return_quantities': {str(item.id): 1}},
            headers=TERMINAL,
        )

        assert response.status_code == 200
        assert response.get_json()['result']['status_id'] == OrderStatus.PARTIALLY_RETURNED
        assert session.get(Order, order_id).final_total == Decimal('10.00')
        assert session.get(ProductStock, (1, 1)).on_hand_qty == 9

    def test_cancel_unknown_order(self, client):
        response = client.post('/pos/orders/999/cancel', json={'refund_method': 'cash'}, headers=TERMINAL)
        assert response.status_code == 404
