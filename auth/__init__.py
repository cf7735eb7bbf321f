"""auth/ -- Credential store, attempt ledger, session registry, login policy
and the authentication state machine for Authflow.

Layer rule: auth/ imports only core/, stdlib and third-party libraries.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
