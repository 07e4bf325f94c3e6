"""Backfill, parity checking and the run ledger for the legacy-to-relational migration."""
from migrations.backfill import BackfillEngine, BackfillResult, UserFailure
from migrations.discovery import DiscoveryPage, OffsetDiscovery, ScanCursorDiscovery, make_discovery
from migrations.ledger import MigrationLedger
from migrations.parity import ParityChecker, ParityReport, UserParityResult

__all__ = [
    "BackfillEngine",
    "BackfillResult",
    "DiscoveryPage",
    "MigrationLedger",
    "OffsetDiscovery",
    "ParityChecker",
    "ParityReport",
    "ScanCursorDiscovery",
    "UserFailure",
    "UserParityResult",
    "make_discovery",
]
