"""
Trade Kernel - approval-gated trading core

Guarded mutations over a shared relational store with:
- Single-use, operation-bound approvals
- An append-only, non-negative capital ledger
- Gap-free document numbering under contention
- Transaction-scoped database mutexes
"""

__version__ = "0.1.0"
