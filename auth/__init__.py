"""auth/ -- Identity and session handling for the BRS admin console.

Stands in for the hosted identity service: accounts, password sign-in, and
the signed session token whose subject is the auth_id that rbac/ resolves.

Layer rule: auth/ imports only core/, rbac/, stdlib + third-party libraries.
It does NOT import from api/ or web/.
api/ and web/ import from auth/, not the other way around.
"""
