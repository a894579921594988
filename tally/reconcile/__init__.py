# Reconciliation core: catalog, ledger, scan classification, reports.
# Siloed module - no imports from the backend or the sync layer

from .models import Item, Catalog, Ledger, Session, ScanMode
from .errors import (
    TallyError,
    SessionNotFound,
    InvalidInput,
    CodeSpaceExhausted,
    CapabilityUnavailable,
    TransientNetworkError,
)
from .config import load_config, Config
from .catalog import build_catalog, canonical_code, catalog_from_payload, choose_mode
from .codes import ALPHABET, CODE_LENGTH, generate_code, normalize_session_code, allocate_code
from .classifier import classify, apply, describe, Decision, ScanOutcome
from .report import generate_report, export_csv, parse_report_csv, format_console, Report

__version__ = "1.0.0"

__all__ = [
    # Models
    "Item",
    "Catalog",
    "Ledger",
    "Session",
    "ScanMode",
    # Errors
    "TallyError",
    "SessionNotFound",
    "InvalidInput",
    "CodeSpaceExhausted",
    "CapabilityUnavailable",
    "TransientNetworkError",
    # Config
    "Config",
    "load_config",
    # Catalog
    "build_catalog",
    "canonical_code",
    "catalog_from_payload",
    "choose_mode",
    # Codes
    "ALPHABET",
    "CODE_LENGTH",
    "generate_code",
    "normalize_session_code",
    "allocate_code",
    # Classifier
    "classify",
    "apply",
    "describe",
    "Decision",
    "ScanOutcome",
    # Report
    "generate_report",
    "export_csv",
    "parse_report_csv",
    "format_console",
    "Report",
]
