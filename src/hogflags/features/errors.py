"""Features – error type tags reported as ``$feature_flag_error``."""
from __future__ import annotations


class FeatureFlagError:
    """Error tags attached to ``$feature_flag_called`` events."""

    ERRORS_WHILE_COMPUTING = "errors_while_computing_flags"
    FLAG_MISSING = "flag_missing"
    QUOTA_LIMITED = "quota_limited"
    TIMEOUT = "timeout"
    CONNECTION_ERROR = "connection_error"
    UNKNOWN_ERROR = "unknown_error"

    @staticmethod
    def api_error(status: int | str) -> str:
        return f"api_error_{status}"


__all__ = ["FeatureFlagError"]
