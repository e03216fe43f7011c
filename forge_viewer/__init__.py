"""
Forge Viewer Service - backend for viewing design models in the browser.

This package contains the complete application:
- core: Framework-agnostic token cache and APS operations
- infrastructure: APS REST client (httpx) and in-memory mock
- api: FastAPI routes and dependencies
- config: Application configuration
"""

__version__ = "0.1.0"
