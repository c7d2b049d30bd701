"""auth/ -- Authentication and authorization package for Barcomp.

Token codec, session store, user store, role policy, and the request gate.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/ or web/.
api/ and web/ import from auth/, not the other way around.
"""
