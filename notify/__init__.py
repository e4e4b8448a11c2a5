"""notify/ -- Out-of-band delivery of one-time codes for AuthKeep.

Layer rule: notify/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/ or auth/. The SessionEngine depends on the
Notifier protocol defined here, never on a concrete sender.
"""
