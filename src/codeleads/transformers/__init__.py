"""
Field transformers: address standardization and location validation.
"""
