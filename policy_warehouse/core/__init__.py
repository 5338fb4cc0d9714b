"""
Core building blocks: models, validators, schema registry and errors.
"""
