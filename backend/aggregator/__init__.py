"""
Multi-provider aggregation engine for matchfeed.
Runs the provider fallback chain, normalizes payloads, and keeps the raw data
cache and provider health records current.
"""
