"""POS blueprint - cart editing, checkout, cancellation and returns (JSON)."""
from decimal import Decimal, InvalidOperation

from flask import Blueprint, request, jsonify, current_app

from cassa.collaborators.factory import build_backend
from cassa.database import get_session
from cassa.exceptions import ValidationError
from cassa.services import discount_allocation_service as allocation
from cassa.services import order_lifecycle_service as lifecycle
from cassa.services.cart_repository import SqlCartRepository
from cassa.services.checkout_service import checkout as checkout_cart
from cassa.services.money import amount_due
from cassa.services.notification_service import notification_for_success
from cassa.services.order_cancellation_service import cancel_reservation, process_return
from cassa.services.promotion_service import evaluate_promotions, parse_promotion

pos_bp = Blueprint('pos', __name__, url_prefix='/pos')


def _payload() -> dict:
    return request.get_json(silent=True) or {}


def _decimal(payload: dict, key: str, required: bool = True):
    value = payload.get(key)
    if value is None:
        if required:
            raise ValidationError(f'Campo obbligatorio mancante: {key}')
        return None
    try:
        number = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f'Valore numerico non valido per {key}: {value!r}')
    if not number.is_finite():
        raise ValidationError(f'Valore numerico non valido per {key}: {value!r}')
    return number


def _int(payload: dict, key: str, default=None):
    value = payload.get(key, default)
    if value is None:
        raise ValidationError(f'Campo obbligatorio mancante: {key}')
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'Valore intero non valido per {key}: {value!r}')


def _terminal_id() -> str:
    return request.headers.get('X-Terminal-Id') or current_app.config['DEFAULT_TERMINAL_ID']


def _repository() -> SqlCartRepository:
    return SqlCartRepository(get_session(), _terminal_id())


def _backend():
    return build_backend(current_app.config, get_session())


def _warehouse_id(payload: dict) -> int:
    return _int(payload, 'warehouse_id', current_app.config['DEFAULT_WAREHOUSE_ID'])


def _terminal_response(terminal, notification=None, status=200, **extra):
    body = {
        'status': 'success',
        'cart': terminal.cart.to_dict(),
        'frozen_orders': [
            {'id': f.id, 'order_number': f.cart.order_number, 'frozen_at': f.frozen_at.isoformat()}
            for f in terminal.frozen_orders
        ],
    }
    if notification:
        body['notification'] = notification.to_dict()
    body.update(extra)
    return jsonify(body), status


# Cart

@pos_bp.route('/cart', methods=['GET'])
def get_cart():
    return _terminal_response(_repository().load())


@pos_bp.route('/cart/reset', methods=['POST'])
def reset_cart():
    repository = _repository()
    terminal = repository.load()
    terminal.cart.reset()
    repository.save(terminal)
    return _terminal_response(terminal)


@pos_bp.route('/cart/lines', methods=['POST'])
def add_line():
    """Scan a product: {product_id, list_price, discounted_price?, article_code?, ...}"""
    payload = _payload()
    repository = _repository()
    terminal = repository.load()

    attributes = {k: payload[k] for k in ('article_code', 'variant_code', 'size', 'brand_id') if k in payload}
    line = terminal.cart.add_product(
        _int(payload, 'product_id'),
        _decimal(payload, 'list_price'),
        _decimal(payload, 'discounted_price', required=False),
        **attributes,
    )
    repository.save(terminal)
    return _terminal_response(terminal, status=201, row_id=line.row_id)


@pos_bp.route('/cart/lines/<row_id>', methods=['PATCH'])
def edit_line(row_id):
    """
    Edit one line. Exactly one of:
        {quantity}, {row_discount}, {unit_index, unit_discount}, {row_total}
    """
    payload = _payload()
    repository = _repository()
    terminal = repository.load()
    cart = terminal.cart

    if 'quantity' in payload:
        cart.set_quantity(row_id, _int(payload, 'quantity'))
    elif 'row_discount' in payload:
        allocation.apply_row_discount(cart.get_line(row_id), _decimal(payload, 'row_discount'))
    elif 'unit_discount' in payload:
        allocation.apply_unit_discount(
            cart.get_line(row_id), _int(payload, 'unit_index'), _decimal(payload, 'unit_discount')
        )
    elif 'row_total' in payload:
        allocation.apply_row_total(cart.get_line(row_id), _decimal(payload, 'row_total'))
    else:
        raise ValidationError('Nessuna modifica indicata per la riga.')

    repository.save(terminal)
    return _terminal_response(terminal)


@pos_bp.route('/cart/lines/<row_id>', methods=['DELETE'])
def delete_line(row_id):
    repository = _repository()
    terminal = repository.load()
    terminal.cart.remove_line(row_id)
    repository.save(terminal)
    return _terminal_response(terminal)


@pos_bp.route('/cart/order-total', methods=['POST'])
def set_order_total():
    repository = _repository()
    terminal = repository.load()
    allocation.apply_order_total(terminal.cart, _decimal(_payload(), 'total'))
    repository.save(terminal)
    return _terminal_response(terminal)


@pos_bp.route('/cart/order-discount', methods=['POST'])
def set_order_discount():
    repository = _repository()
    terminal = repository.load()
    allocation.apply_order_discount(terminal.cart, _decimal(_payload(), 'percent'))
    repository.save(terminal)
    return _terminal_response(terminal)


@pos_bp.route('/cart/promotions', methods=['POST'])
def apply_promotions():
    repository = _repository()
    terminal = repository.load()

    rules = [parse_promotion(record.rule) for record in _backend().list_promotions()]
    applied = evaluate_promotions(terminal.cart, rules)

    repository.save(terminal)
    return _terminal_response(terminal, applied_promotions=[rule.text for rule in applied])


@pos_bp.route('/cart/vouchers', methods=['POST'])
def apply_voucher():
    payload = _payload()
    code = (payload.get('code') or '').strip()
    if not code:
        raise ValidationError('Inserisci il codice del buono.')

    repository = _repository()
    terminal = repository.load()
    lifecycle.apply_voucher(terminal.cart, _backend().get_voucher(code))
    repository.save(terminal)
    return _terminal_response(terminal)


@pos_bp.route('/cart/vouchers/<int:voucher_id>', methods=['DELETE'])
def remove_voucher(voucher_id):
    repository = _repository()
    terminal = repository.load()
    lifecycle.remove_voucher(terminal.cart, voucher_id)
    repository.save(terminal)
    return _terminal_response(terminal)


@pos_bp.route('/cart/payment-split', methods=['POST'])
def payment_split():
    """{methods: [id, id?], edited_method?, edited_amount?} -> amounts per method"""
    payload = _payload()
    cart = _repository().load().cart
    paid = cart.previous_payments_total + cart.vouchers_total

    methods = [int(m) for m in payload.get('methods') or []]
    edited_method = payload.get('edited_method')
    amounts = lifecycle.split_payment_amounts(
        amount_due(cart.final_total, paid),
        methods,
        int(edited_method) if edited_method is not None else None,
        _decimal(payload, 'edited_amount', required=edited_method is not None),
    )
    return jsonify({'status': 'success', 'amounts': {str(k): str(v) for k, v in amounts.items()}})


# Frozen orders

@pos_bp.route('/frozen', methods=['GET'])
def list_frozen():
    return _terminal_response(_repository().load())


@pos_bp.route('/frozen', methods=['POST'])
def freeze():
    repository = _repository()
    terminal = repository.load()
    frozen = lifecycle.freeze_cart(terminal, current_app.config['FROZEN_ORDERS_LIMIT'])
    repository.save(terminal)
    return _terminal_response(terminal, status=201, frozen_id=frozen.id)


@pos_bp.route('/frozen/<frozen_id>/restore', methods=['POST'])
def unfreeze(frozen_id):
    repository = _repository()
    terminal = repository.load()
    lifecycle.unfreeze_cart(terminal, frozen_id)
    repository.save(terminal)
    return _terminal_response(terminal)


# Reservations and checkout

@pos_bp.route('/reservations/<int:order_id>/load', methods=['POST'])
def load_reservation(order_id):
    repository = _repository()
    terminal = repository.load()
    backend = _backend()

    lifecycle.load_reservation(
        terminal.cart,
        backend.get_order(order_id),
        backend.get_order_items(order_id),
        backend.get_order_payments(order_id),
    )
    repository.save(terminal)
    return _terminal_response(terminal)


@pos_bp.route('/checkout', methods=['POST'])
def checkout():
    """{payments: {method_id: amount}, is_partial?, warehouse_id?, client_id?}"""
    payload = _payload()
    repository = _repository()
    terminal = repository.load()

    client_id = payload.get('client_id')
    result = checkout_cart(
        _backend(),
        terminal.cart,
        payload.get('payments') or {},
        _warehouse_id(payload),
        is_partial=payload.get('is_partial'),
        client_id=int(client_id) if client_id is not None else None,
    )
    repository.save(terminal)

    current_app.logger.info(f"[CHECKOUT] Order {result.code} closed as {result.status.name}")
    notification = notification_for_success('Ordine registrato', f'Ordine {result.code} salvato.')
    return _terminal_response(terminal, notification, status=201, order=result.to_dict())


@pos_bp.route('/orders/<int:order_id>/cancel', methods=['POST'])
def cancel_order(order_id):
    """{refund_method, deposit_amount, warehouse_id?}"""
    payload = _payload()
    result = cancel_reservation(
        _backend(),
        order_id,
        _warehouse_id(payload),
        payload.get('refund_method', 'cash'),
        _decimal(payload, 'deposit_amount', required=False) or Decimal('0'),
        voucher_validity_days=current_app.config['VOUCHER_VALIDITY_DAYS'],
    )
    notification = notification_for_success('Prenotazione annullata', f'Ordine {order_id} annullato.')
    return jsonify({'status': 'success', 'result': result.to_dict(), 'notification': notification.to_dict()})


@pos_bp.route('/orders/<int:order_id>/return', methods=['POST'])
def return_order(order_id):
    """{refund_method, return_quantities: {item_id: qty}, is_partial_return?, warehouse_id?}"""
    payload = _payload()
    quantities = payload.get('return_quantities') or {}
    try:
        quantities = {int(k): int(v) for k, v in quantities.items()}
    except (TypeError, ValueError, AttributeError):
        raise ValidationError('Quantità di reso non valide.')

    result = process_return(
        _backend(),
        order_id,
        _warehouse_id(payload),
        payload.get('refund_method', 'cash'),
        quantities,
        payload.get('is_partial_return'),
        voucher_validity_days=current_app.config['VOUCHER_VALIDITY_DAYS'],
        return_payment_method_id=current_app.config['RETURN_PAYMENT_METHOD_ID'],
    )
    notification = notification_for_success('Reso registrato', f'Reso sull\'ordine {order_id} completato.')
    return jsonify({'status': 'success', 'result': result.to_dict(), 'notification': notification.to_dict()})
