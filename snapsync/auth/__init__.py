"""Authentication module."""

from snapsync.auth.session import (
    create_session_token,
    verify_session_token,
    get_current_operator,
    get_current_operator_optional,
    require_owner,
)

__all__ = [
    "create_session_token",
    "verify_session_token",
    "get_current_operator",
    "get_current_operator_optional",
    "require_owner",
]
