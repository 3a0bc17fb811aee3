"""
ITAD Kernel - asset lifecycle core for IT asset disposition.

Provides:
- The authoritative asset record with optimistic-concurrency versioning
- The lifecycle state machine (register -> sanitize -> recycle -> transfer)
- A hash-chained, append-only audit store
- Structured logging, typed errors and an injectable clock
"""

__version__ = "0.1.0"
