"""
OU Path Sync - Stamp each mail-enabled Active Directory object's OU path into a custom attribute.

This package walks the domains of a forest, derives the parent container path of every
Exchange-enabled user and mail-enabled group from its canonical name, and writes that path
into a configurable extensionAttribute so cloud directory tooling can scope administration by it.
"""

__version__ = "1.0.0"
__author__ = "OU Path Sync Team"
