"""
Custody Vault

A single-asset custodial ledger with per-depositor balances, a hard cap on
total custodied value, a per-withdrawal ceiling, and a hash-chained audit
trail of every committed deposit and withdrawal.
"""

__version__ = "1.0.0"
