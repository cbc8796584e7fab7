"""
Shared helpers: timezones, slot math, retries, caching, batching, logging
"""
