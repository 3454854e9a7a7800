"""Core building blocks for the LineScanner refresh engine.

This package contains pure, provider-agnostic pieces:

- ``staleness_cache``: TTL and throttle aware in-memory cache
- ``errors``: closed taxonomy of upstream fetch failures
- ``fetch_interface``: ABC and DTOs for swappable data providers
- ``refresh_config``: every interval and TTL, overridable from the env

Nothing in this package imports from ``linescanner.services``.
All modules are free of I/O and unit-testable in isolation.
"""
