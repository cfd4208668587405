"""
Login sessions: server-side rows backing every issued JWT.

A JWT is only honoured while its session row is neither revoked nor expired,
which lets admins kick users without waiting for token expiry.
"""
