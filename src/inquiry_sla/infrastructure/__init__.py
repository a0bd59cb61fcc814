"""
Infrastructure Layer
====================

Database engine and session lifecycle shared by all modules.
"""
