"""Rate limiting adapters.

This package provides the window stores behind the limiter: an in-process
store and a Redis-backed store sharing the same fixed-window contract.
"""
