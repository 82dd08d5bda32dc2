"""
Vault Policy Module

The two limits a vault enforces. Validated once at construction and frozen
for the lifetime of the vault.
"""

from dataclasses import dataclass
from typing import Any, Dict, Tuple

from .errors import InvalidConstructorParams


def _is_uint(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


@dataclass(frozen=True)
class VaultPolicy:
    """
    Immutable policy pair.
    global_cap bounds the aggregate custodied total; withdrawal_ceiling bounds
    the value moved by a single withdrawal.
    """
    global_cap: int
    withdrawal_ceiling: int

    def __post_init__(self):
        if not _is_uint(self.global_cap) or not _is_uint(self.withdrawal_ceiling):
            raise InvalidConstructorParams("Policy parameters must be non-negative integers")

        if self.global_cap == 0 or self.withdrawal_ceiling == 0:
            raise InvalidConstructorParams("Policy parameters must be greater than zero")

        if self.withdrawal_ceiling > self.global_cap:
            raise InvalidConstructorParams(
                f"Withdrawal ceiling {self.withdrawal_ceiling} exceeds global cap {self.global_cap}"
            )

    def as_tuple(self) -> Tuple[int, int]:
        """Return (global_cap, withdrawal_ceiling)"""
        return self.global_cap, self.withdrawal_ceiling

    def to_dict(self) -> Dict[str, Any]:
        return {
            "global_cap": self.global_cap,
            "withdrawal_ceiling": self.withdrawal_ceiling
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'VaultPolicy':
        return cls(
            global_cap=int(data["global_cap"]),
            withdrawal_ceiling=int(data["withdrawal_ceiling"])
        )
