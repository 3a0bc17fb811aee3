"""
ITADConfig schema.

Frozen dataclasses for the runtime configuration.  YAML is parsed into
these types by ``itad_config.loader``; services receive the relevant
section through their constructors and never read files themselves.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Bulk engine
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BulkSettings:
    """Partitioning and pacing of bulk runs."""

    default_batch_size: int = 50
    max_batch_size: int = 500
    inter_batch_delay_seconds: float = 1.0
    max_conflict_retries: int = 3


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LifecycleSettings:
    carbon_credit_award: int = 10
    default_owner: str = "0x742d35Cc6634C0532925a3b8D4C2C4e4C4C4C4C4"
    strict_owner_format: bool = False


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RetrySettings:
    """Bounded retry with exponential backoff."""

    max_attempts: int = 3
    initial_wait_seconds: float = 0.5
    max_wait_seconds: float = 8.0


@dataclass(frozen=True)
class LedgerSettings:
    """Ledger proof recorder.  Disabled means no ledger calls at all."""

    enabled: bool = False
    endpoint: str | None = None
    timeout_seconds: float = 10.0
    retry: RetrySettings = field(default_factory=RetrySettings)


@dataclass(frozen=True)
class EvidenceSettings:
    """Proof storage.  ``root`` keeps blobs on disk; unset keeps them in memory."""

    root: str | None = None
    gateway_url: str = "https://ipfs.io/ipfs/"
    retry: RetrySettings = field(default_factory=RetrySettings)


@dataclass(frozen=True)
class EmailSettings:
    enabled: bool = False
    smtp_host: str = "localhost"
    smtp_port: int = 587
    sender: str = "itad@localhost"
    recipients: tuple[str, ...] = ()
    use_tls: bool = True
    username: str | None = None
    password: str | None = None


@dataclass(frozen=True)
class SlackSettings:
    webhook_url: str | None = None
    channel: str = "#bulk-operations"


@dataclass(frozen=True)
class TeamsSettings:
    webhook_url: str | None = None


@dataclass(frozen=True)
class NotificationSettings:
    """A channel is active when enabled (email) or given a webhook URL."""

    email: EmailSettings = field(default_factory=EmailSettings)
    slack: SlackSettings = field(default_factory=SlackSettings)
    teams: TeamsSettings = field(default_factory=TeamsSettings)
    timeout_seconds: float = 10.0


@dataclass(frozen=True)
class AuditSettings:
    record_failures: bool = False


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ITADConfig:
    """Effective configuration.  ``checksum`` fingerprints the merged YAML."""

    bulk: BulkSettings = field(default_factory=BulkSettings)
    lifecycle: LifecycleSettings = field(default_factory=LifecycleSettings)
    ledger: LedgerSettings = field(default_factory=LedgerSettings)
    evidence: EvidenceSettings = field(default_factory=EvidenceSettings)
    notifications: NotificationSettings = field(default_factory=NotificationSettings)
    audit: AuditSettings = field(default_factory=AuditSettings)
    database_url: str = "sqlite:///itad.db"
    checksum: str = ""
