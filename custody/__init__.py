#Expose the custody pieces:
#Scan sequencing (record / merge / deferred transitions)
#QR token helpers

from .protocol import (
    AlreadyScanned,
    CustodyProtocolError,
    OutOfSequence,
    ScanResult,
    merge_custody_events,
    record_scan,
    resolve_deferred_transitions,
)
from .tokens import QRTokens, TokensNotIssued, build_qr_payload, tokens_issuable

__all__ = [
    "record_scan",
    "merge_custody_events",
    "resolve_deferred_transitions",
    "ScanResult",
    "CustodyProtocolError",
    "OutOfSequence",
    "AlreadyScanned",
    "QRTokens",
    "TokensNotIssued",
    "build_qr_payload",
    "tokens_issuable",
]
