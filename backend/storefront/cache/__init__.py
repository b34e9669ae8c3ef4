"""
Cache package initialization.

Provides the Redis client wrapper used for best-effort caching of order
listings.
"""
