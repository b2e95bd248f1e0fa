"""rbac/ -- Roles, permissions, and permission resolution for the admin console.

Layer rule: rbac/ imports only core/, cache/, stdlib, and third-party libraries.
It does NOT import from api/, web/, or auth/.
api/ and web/ import from rbac/, not the other way around.
"""
