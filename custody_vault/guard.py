"""
Unsolicited Inflow Guard

The vault tracks its custodied total as an explicit ledger field instead of
deriving it from the value it actually holds. Value entering through any
channel other than deposit could never be reconciled afterwards, so it is
refused at the door.
"""

import logging
from typing import FrozenSet

from .errors import DirectETHNotAllowed

logger = logging.getLogger("custody_vault.guard")


class InflowGuard:
    """Decides whether value attached to a call may enter the vault"""

    SANCTIONED_ENTRY_POINT = "deposit"

    def __init__(self, known_operations: FrozenSet[str]):
        self.known_operations = known_operations

    def check_receive(self, sender: str, value: int) -> None:
        """A bare value transfer to the vault. Always refused."""
        logger.warning(f"Rejected direct transfer of {value} from {sender}")
        raise DirectETHNotAllowed()

    def check_call(self, sender: str, operation: str, value: int) -> None:
        """
        Refuse value attached to any operation other than deposit.

        Raises:
            DirectETHNotAllowed: value > 0 on a non-deposit operation
        """
        if operation == self.SANCTIONED_ENTRY_POINT or value == 0:
            return
        logger.warning(f"Rejected {value} attached to '{operation}' from {sender}")
        raise DirectETHNotAllowed()

    def is_known(self, operation: str) -> bool:
        return operation in self.known_operations
