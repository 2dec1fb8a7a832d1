# Shared utilities package
from .config import LoaderConfig, ReportConfig, Settings, TransactionConfig, load_config

__all__ = [
    "LoaderConfig",
    "ReportConfig",
    "Settings",
    "TransactionConfig",
    "load_config",
]
