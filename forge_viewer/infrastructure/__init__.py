"""
Infrastructure layer - external service integrations.

- aps: Autodesk Platform Services (authentication, OSS, Model Derivative)

These wrappers translate between external formats and our domain models.
"""
