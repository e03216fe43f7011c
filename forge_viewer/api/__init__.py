"""
HTTP layer: FastAPI routes and dependency providers.
"""
