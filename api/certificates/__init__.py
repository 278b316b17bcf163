"""
Certificate lookup: search by ID number or certificate number.
"""
