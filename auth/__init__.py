"""auth/ -- Password hashing and credential storage for keyward.

Layer rule: auth/ imports from core/ and third-party libraries only.
It does NOT import from sessions/. Session handling is independent of how
users are stored.
"""
