"""
Core infrastructure: fingerprinting, signing, blob storage, registry clients and guards.
"""
