"""
Vault Error Taxonomy

Every rejection raised by the vault is a typed exception carrying exactly the
data a caller needs to understand it. Callers branch on the class or on the
stable ``code`` attribute, never on the message text.
"""

from typing import Any, Dict


class VaultError(Exception):
    """Base class for all vault rejections"""

    code = "VaultError"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)

    @property
    def details(self) -> Dict[str, Any]:
        """Payload fields carried by this error"""
        return {}

    def to_dict(self) -> Dict[str, Any]:
        """Machine-readable form of the error"""
        return {"error": self.code, "detail": self.details}


class ZeroAmount(VaultError):
    """Deposit or withdrawal amount is zero."""

    code = "ZeroAmount"

    def __init__(self):
        super().__init__("Amount must be greater than zero")


class CapExceeded(VaultError):
    """A deposit would push the custodied total above the global cap."""

    code = "CapExceeded"

    def __init__(self, attempted: int, cap: int):
        self.attempted = attempted
        self.cap = cap
        super().__init__(f"Deposit would bring total to {attempted}, cap is {cap}")

    @property
    def details(self) -> Dict[str, Any]:
        return {"attempted": self.attempted, "cap": self.cap}


class ThresholdExceeded(VaultError):
    """A withdrawal exceeds the per-operation ceiling."""

    code = "ThresholdExceeded"

    def __init__(self, attempted: int, threshold: int):
        self.attempted = attempted
        self.threshold = threshold
        super().__init__(f"Withdrawal of {attempted} exceeds ceiling {threshold}")

    @property
    def details(self) -> Dict[str, Any]:
        return {"attempted": self.attempted, "threshold": self.threshold}


class InsufficientVault(VaultError):
    """The caller's balance is below the requested withdrawal."""

    code = "InsufficientVault"

    def __init__(self, balance: int, attempted: int):
        self.balance = balance
        self.attempted = attempted
        super().__init__(f"Balance {balance} is below requested {attempted}")

    @property
    def details(self) -> Dict[str, Any]:
        return {"balance": self.balance, "attempted": self.attempted}


class DirectETHNotAllowed(VaultError):
    """Value arrived outside the deposit entry point."""

    code = "DirectETHNotAllowed"

    def __init__(self):
        super().__init__("Value may only enter the vault through deposit")


class NativeTransferFailed(VaultError):
    """The outbound asset transfer did not succeed."""

    code = "NativeTransferFailed"

    def __init__(self):
        super().__init__("Outbound transfer failed")


class InvalidConstructorParams(VaultError):
    """Policy parameters failed validation at construction."""

    code = "InvalidConstructorParams"

    def __init__(self, reason: str = ""):
        self.reason = reason
        super().__init__(reason or "Invalid vault policy parameters")


class TransferIndeterminate(VaultError):
    """The outbound transfer may or may not have settled."""

    code = "TransferIndeterminate"

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Outcome of transfer {reference} is unknown")

    @property
    def details(self) -> Dict[str, Any]:
        return {"reference": self.reference}
