"""
Domain models, validation, normalization and configuration.
"""
