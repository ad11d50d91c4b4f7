"""auth/ -- Authentication and authorization package for JWT Pizza.

Layer rule: auth/ imports from core/ and (for the Franchise shape used by the
policy) pizza.models. It does NOT import from api/.
api/ imports from auth/, not the other way around.
"""
