"""auth/ -- Accounts, sessions, and the login state machine for UserPortal.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
api/ and web/ import from auth/, not the other way around.
"""
