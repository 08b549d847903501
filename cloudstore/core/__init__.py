"""
Core package - configuration, errors and logging shared by every backend.
"""
