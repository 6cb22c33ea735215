"""
Condition-timer transparency engine - redacted condition summaries, share links and audited exports for tabletop campaigns.
"""

from .config import TransparencySettings, load_settings
from .engine import TransparencyEngine, build_engine
from .exceptions import (
    AppendFailure,
    FatalExportFailure,
    Forbidden,
    NotFound,
    StorageFailure,
    TransientDeliveryFailure,
    TransparencyError,
    ValidationError,
)

try:
    from importlib.metadata import PackageNotFoundError, version as _get_version
    __version__ = _get_version("condition-transparency")
except PackageNotFoundError:
    __version__ = "0.1.0"  # Fallback if metadata unavailable
__all__ = [
    "TransparencySettings",
    "load_settings",
    "TransparencyEngine",
    "build_engine",
    "AppendFailure",
    "FatalExportFailure",
    "Forbidden",
    "NotFound",
    "StorageFailure",
    "TransientDeliveryFailure",
    "TransparencyError",
    "ValidationError",
]
