"""Cart Repository - persistence of a terminal's cart and frozen orders."""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy.orm import Session

from cassa.models import CartDraft
from cassa.services.cart import Terminal


class CartRepository(ABC):
    """Where a terminal's working state lives between requests."""

    @abstractmethod
    def load(self) -> Terminal:
        """Stored terminal state, or an empty one."""

    @abstractmethod
    def save(self, terminal: Terminal) -> None:
        ...

    @abstractmethod
    def clear(self) -> None:
        ...


class SqlCartRepository(CartRepository):
    """One CartDraft row per terminal, holding the serialized state."""

    def __init__(self, session: Session, terminal_id: str):
        self.session = session
        self.terminal_id = terminal_id

    def _draft(self) -> Optional[CartDraft]:
        return self.session.query(CartDraft).filter(
            CartDraft.terminal_id == self.terminal_id
        ).first()

    def load(self) -> Terminal:
        draft = self._draft()
        if not draft or not draft.payload:
            return Terminal()
        return Terminal.from_dict(draft.payload)

    def save(self, terminal: Terminal) -> None:
        draft = self._draft()
        if not draft:
            draft = CartDraft(terminal_id=self.terminal_id)
            self.session.add(draft)
        # Reassign so the JSON column is flagged dirty
        draft.payload = terminal.to_dict()
        draft.updated_at = datetime.now()
        self.session.commit()

    def clear(self) -> None:
        self.session.query(CartDraft).filter(
            CartDraft.terminal_id == self.terminal_id
        ).delete(synchronize_session=False)
        self.session.commit()


class InMemoryCartRepository(CartRepository):
    """
    Storage keyed by terminal id, held in `store`.

    Each repository gets its own dict unless one is passed in; pass the same
    dict to several repositories to let them see each other's terminals.
    """

    def __init__(self, terminal_id: str = 'default', store: Optional[Dict[str, dict]] = None):
        self.terminal_id = terminal_id
        self.store = {} if store is None else store

    def load(self) -> Terminal:
        data = self.store.get(self.terminal_id)
        return Terminal.from_dict(data) if data else Terminal()

    def save(self, terminal: Terminal) -> None:
        self.store[self.terminal_id] = terminal.to_dict()

    def clear(self) -> None:
        self.store.pop(self.terminal_id, None)
