"""
Pydantic models for manifests, registry records and verification results.
"""
