"""
Best-effort transactions on the backing node session.
"""

from __future__ import annotations

from ..errors import BlazeODMError
from ..storage.base import NodeSession, TransactionsUnsupportedError
from ..utils import get_logger


class TransactionError(BlazeODMError):
    pass


class TransactionManager:
    """
    Coordinates begin/commit/rollback, tolerating sessions without transactions.
    """

    def __init__(self, session: NodeSession) -> None:
        self.session = session
        self.active = False
        self.logger = get_logger("persistence.transaction")

    def begin(self) -> bool:
        """
        Start a transaction; returns False when the session has none or when
        the caller already opened one on the session.
        """
        if self.active:
            raise TransactionError("A transaction is already active.")
        if getattr(self.session, "in_transaction", False):
            return False
        try:
            self.session.begin_transaction()
        except TransactionsUnsupportedError:
            self.logger.debug("Backing session does not support transactions; continuing without")
            return False
        self.active = True
        return True

    def commit(self) -> None:
        if not self.active:
            return
        self.active = False
        self.session.commit_transaction()

    def rollback(self) -> None:
        if not self.active:
            return
        self.active = False
        self.session.rollback_transaction()
