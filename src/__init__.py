"""
Tiered POS Analytics Store
"""
