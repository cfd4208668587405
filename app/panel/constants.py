"""
Central constants for the admin API.
"""
from __future__ import annotations

# Allowed values for AuditLog.action
AUDIT_ACTIONS = frozenset(
    {
        "login",
        "login_failed",
        "logout",
        "create_user",
        "update_user",
        "delete_user",
        "ban_user",
        "unban_user",
        "kick_user",
        "role_change",
        "reset_password",
        "terminate_all_sessions",
    }
)

# Plaintext password length bounds
PASSWORD_MIN_LENGTH = 6
PASSWORD_MAX_LENGTH = 100

# Pagination
MAX_PAGE_SIZE = 100
RECENT_ITEMS_LIMIT = 10

# Sortable columns exposed by the list endpoints (API name -> model attribute)
SESSION_SORT_FIELDS = {
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "lastActivity": "last_activity",
    "expiresAt": "expires_at",
}
AUDIT_SORT_FIELDS = {
    "createdAt": "created_at",
    "action": "action",
}

# Paths that skip user loading and request logging
UNAUTHENTICATED_PREFIXES = ("/health", "/healthz", "/api/health")
