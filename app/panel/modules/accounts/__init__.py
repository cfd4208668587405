"""
Accounts module (admin-only).

- Users list/search + create + detail/update/delete
- Ban/unban with reason (banning revokes sessions)
- Admin password reset
"""
