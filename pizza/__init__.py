"""pizza/ -- Menu, order and franchise domain for JWT Pizza.

Layer rule: pizza/ imports from core/ only. It does NOT import from api/ or auth/.
"""
