"""
Database module containing session management and base models.
"""
