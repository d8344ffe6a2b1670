"""
Voice Usage Dashboard - Shared Utilities

Common functionality used by the API and its services:
- Error taxonomy and exception handlers
- Logging configuration
"""

__version__ = "0.1.0"
