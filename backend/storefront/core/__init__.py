"""
Core package for configuration, logging and the error taxonomy.
"""
