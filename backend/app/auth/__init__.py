"""Authentication module (accounts + identity tokens).

Provides username/password accounts and signed, time-limited tokens used by
both the REST facade and the realtime core.

Services:
    - UserRepository: data access over the users table.
    - TokenService: issues and verifies HS256 identity tokens.
    - AuthService: registration, login, logout, status and token auth.
"""
