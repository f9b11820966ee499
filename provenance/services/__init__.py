"""
Engine services: manifest building, platform bindings, registration and verification.
"""
