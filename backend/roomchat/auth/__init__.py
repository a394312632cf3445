"""Authentication module.

Provides username/password registration and login backed by an in-memory
directory, and signed bearer tokens consumed by the chat core.

Services:
    - UserDirectory: registered users with salted PBKDF2 password hashes.
    - IdentityVerifier: issues and verifies HS256 JWTs.
"""
