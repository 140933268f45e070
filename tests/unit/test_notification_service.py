"""
Unit tests for operator notifications.
"""

from cassa.exceptions import CollaboratorCallFailure, CompensationFailure, ValidationError
from cassa.services.notification_service import notification_for_error, notification_for_success


class TestNotifications:
    """One notification per failure, with the right variant."""

    def test_plain_failure(self):
        notification = notification_for_error(CollaboratorCallFailure('adjust_stock'))
        assert notification.level == 'error'
        assert notification.title == "Impossibile completare l'operazione"

    def test_validation_message_is_shown(self):
        notification = notification_for_error(ValidationError('Sconto non valido'))
        assert notification.message == 'Sconto non valido'

    def test_failed_rollback_asks_for_manual_reconciliation(self):
        error = CompensationFailure(CollaboratorCallFailure('create_voucher'), ['stock_add:1: boom'])
        notification = notification_for_error(error)
        assert notification.level == 'warning'
        assert 'riconciliazione manuale' in notification.message

    def test_success(self):
        notification = notification_for_success('Ordine registrato', 'Ordine CS1 salvato.')
        assert notification.to_dict() == {
            'level': 'success', 'title': 'Ordine registrato', 'message': 'Ordine CS1 salvato.',
        }
