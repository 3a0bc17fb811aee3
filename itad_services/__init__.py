"""
itad_services -- best-effort collaborators around the lifecycle kernel.

Ledger proof recorder, evidence store, notification channels and the
bounded retry policy they share.  Nothing here is a source of truth; every
failure surfaces as a ``CollaboratorError`` subclass that callers log and
contain.
"""
