"""
Cache package for the permissions engine.

Provides the in-process effective-set cache that memoizes each principal's
resolved decisions for a freshness window, with explicit invalidation
driven by the assignment service.
"""
