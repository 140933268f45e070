"""Notification Service - operator-facing messages for workflow outcomes."""
from dataclasses import dataclass, asdict

from cassa.exceptions import CassaError, CompensationFailure

LEVEL_SUCCESS = 'success'
LEVEL_ERROR = 'error'
LEVEL_WARNING = 'warning'


@dataclass
class Notification:
    level: str
    title: str
    message: str

    def to_dict(self):
        return asdict(self)


def notification_for_error(error: Exception) -> Notification:
    """
    Exactly one notification per failure.

    A failed rollback is reported as completed with side effects that need
    manual reconciliation; anything else as not completed.
    """
    if isinstance(error, CompensationFailure):
        return Notification(
            level=LEVEL_WARNING,
            title='Intervento manuale richiesto',
            message=(
                "L'operazione si è interrotta lasciando modifiche parziali che richiedono "
                f"una riconciliazione manuale: {error.original}"
            ),
        )

    message = error.message if isinstance(error, CassaError) else str(error)
    return Notification(
        level=LEVEL_ERROR,
        title="Impossibile completare l'operazione",
        message=message,
    )


def notification_for_success(title: str, message: str) -> Notification:
    return Notification(level=LEVEL_SUCCESS, title=title, message=message)

