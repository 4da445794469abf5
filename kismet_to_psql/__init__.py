"""
Kismet SQLite log to PostgreSQL migration tool
"""

__version__ = '0.1.0'
