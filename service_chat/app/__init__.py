"""
Chat API service package.

The service fronts a backend-as-a-service for chat sessions and messages and
keeps short-lived copies of its hottest reads in process:
- Authentication: bearer tokens resolved by the backend auth endpoint
- Caching: session lists, message history and permission checks

Structure:
- app.main: FastAPI app, routes, and cache wiring.
- app.adapters: HTTP client for the backend.
- app.caching: Memory cache, cache-aside wrapper and invalidation.
"""
