"""auth/ -- Authentication, sessions and the credential store.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/, farm/, approvals/ or notify/.
api/ imports from auth/, not the other way around.
"""
