"""
Funding Kernel - contract balance ledger

Funding contracts, their transactions, and the balance they carry:
- Draft / posted / voided transaction lifecycle
- Exactly reversible posting and voiding
- Per-contract serialization of balance mutations
- Renewal chains via one-directional parent pointers
- Append-only transaction audit trail
"""

__version__ = "0.1.0"
