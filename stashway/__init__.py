"""
Stashway MMG Payments

Verifies Mobile Money Guyana (MMG) transfers for Stashway plan upgrades.
A payer pays with a server-generated reference code, both sides of the
transfer upload a screenshot, and the two extractions are reconciled
against the request before the plan is activated.

DESIGN PRINCIPLES:
1. Server generates -> AI transcribes -> Rules decide
2. Fail early, fail visibly
3. A failed match is a result, not a crash
4. Every step must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Stashway Team"
