"""
docmigrate - versioned, auditable migrations for MongoDB.
"""

__version__ = "1.0.0"
