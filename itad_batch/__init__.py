"""
itad_batch -- Bulk lifecycle operations for IT asset disposition.

Applies one lifecycle transition to many assets with per-item SAVEPOINT
isolation, partial-failure tolerance, conflict retry, and best-effort
side effects (ledger proof, audit entry, run notification).  Also
generates CSV templates, validation reports, and sanitization reports.

Architecture:
    itad_batch/ is a top-level package.  Nothing in itad_kernel/,
    itad_services/ or itad_config/ imports from itad_batch.
    ``BulkOrchestrator.from_session()`` is the composition root.
"""
