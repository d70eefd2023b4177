"""
Infrastructure layer - external service integrations.

Each subdirectory wraps an external dependency:
- storage: Object storage (S3 and S3-compatible stores)

These wrappers translate between the client library's shapes and the
storage contract defined in cachestore.core.
"""
