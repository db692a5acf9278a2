"""
Storage: relational metadata (SQLAlchemy) and blob storage (S3).
"""
