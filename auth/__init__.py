"""auth/ -- Account, credential and token core for setu-auth.

Layer rule: auth/ imports stdlib, third-party libraries and core/ only.
It does NOT import from api/. api/ imports from auth/, not the other way
around. auth/dependencies.py is the one module that knows about FastAPI.
"""
