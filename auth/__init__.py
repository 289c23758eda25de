"""auth/ -- Account authentication and verification core for authcore.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/. api/ imports from auth/, not the other way around.
fastapi is allowed in auth/dependencies.py only, because that module is part
of the FastAPI dependency injection system.
"""
