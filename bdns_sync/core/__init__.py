"""
Domain models, errors and shared helpers.
"""
