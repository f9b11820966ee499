"""
Proof of Creativity - Content Provenance Registration & Verification

Anchors signed authorship claims for content fingerprints on a ledger,
binds them to platform locators, and verifies claims by content, by
platform locator, or by manifest.
"""

__version__ = "1.0.0"
__author__ = "Proof of Creativity Team"
__description__ = "Content Provenance Registration & Verification Engine"
