"""
switchlink - resilient client for the Leviton smart switch cloud API.
"""

__version__ = "0.1.0"
