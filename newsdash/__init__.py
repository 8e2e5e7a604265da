"""
newsdash - client-side data synchronization engine for the news dashboard.
"""

__version__ = "0.1.0"
