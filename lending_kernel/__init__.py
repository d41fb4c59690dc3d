"""
Lending Kernel - copy inventory and loan concurrency control

A transactional core for a lending pool of individually coded book copies:
- One active holder per physical copy
- Copy counters kept consistent with loan state under concurrency
- Atomic loan lifecycle (open, substitute, close)
- Full-recount reconciliation of cached counters
"""

__version__ = "0.1.0"
