"""
Placement Matching & Allocation Engine
Scores students against courses and jobs, and allocates capacity-limited
seats with a FIFO waiting list.

Architecture:
- Engine: pure decisions (score, eligibility, ledger rules, seat state machine)
- Repository: pluggable persistence (in-memory, MongoDB transactions)
- Notifications: requested by the engine, delivered by the caller
"""

__version__ = "1.0.0"
