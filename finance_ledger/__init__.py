"""
Finance Ledger - Source Package

The aggregation core of a personal finance tracker: transactions,
accounts, budgets and savings goals for a single user, the rules that
roll them up into balances and reports, and the currency conversion
applied when amounts are displayed.

DESIGN PRINCIPLES:
1. One write path - every mutation goes through the LedgerCoordinator
2. Persist first, reflect second
3. Derived values are caches, never ground truth
4. Every mutation is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Finance Ledger Team"
