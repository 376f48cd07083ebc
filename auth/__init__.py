"""auth/ -- Authentication package for Markpost.

Credential store, token service, GitHub OAuth client, and the auth
orchestrator (AuthService) that ties them together.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/, web/, or posts/ (dependencies.py excepted:
it is part of the FastAPI dependency injection system).
"""
