"""approvals/ -- Edit and inactivation requests with one-time approval codes.

Layer rule: approvals/ may import from core/ and auth/. It does NOT import
from api/, farm/ or notify/.
"""
