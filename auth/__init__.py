"""auth/ -- Credential and session lifecycle for AuthKeep.

UserStore, CodeLedger and RefreshTokenLedger own persistence; TokenSigner owns
JWTs; SessionEngine (auth/engine.py) composes them into the account flows.

Layer rule: auth/ imports only stdlib, third-party libraries, core/, and the
Notifier protocol from notify/. It does NOT import from api/.
api/ imports from auth/, not the other way around. The one exception is
auth/dependencies.py, which is part of FastAPI's dependency injection.
"""
