"""Core reconciliation logic.

Architecture:
    - Pure Python on top of the directory client (no resource knowledge)
    - Testable with an in-memory directory client
    - Reusable by any driver (CLI, tests, other hosts)

Module Structure:
    - graph/          : Low-level Microsoft Graph client
    - reconciler.py   : Generic create/read/update/delete engine
    - state.py        : Persisted state, drift and schema upgrades
    - identifiers.py  : Composite credential IDs
    - locks.py        : Named mutexes per parent object
    - errors.py       : Reconciliation error taxonomy
    - validators.py   : Desired-state validation helpers
    - audit.py        : Signed JSONL audit trail

Usage Pattern:
    Import explicitly when needed:
        from directory_provider.core.reconciler import Reconciler, ResourceAdapter
        from directory_provider.core.errors import DuplicateResourceError
        from directory_provider.core.identifiers import encode, decode
"""
