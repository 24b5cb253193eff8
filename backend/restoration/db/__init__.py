"""Database access: pooled sessions, SQL statements and data models.

Services receive a ``database.DBConnection`` (or any object implementing
``database.ConnectionProtocol``) and build their statements with the
functions in ``queries``.
"""
