"""farm/ -- Catalogs and transactional records of the fish farm.

Layer rule: farm/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/, auth/, approvals/ or notify/.
"""
