"""
Code violation lead intake and contact enrichment.
"""
