"""
Core package for shared utilities.

Configuration, structured logging and token helpers shared by the API,
database and service layers.
"""
