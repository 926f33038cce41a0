"""
Tastemate — ORM model registry.

Importing every model here ensures that Alembic (and any other tool that
inspects ``Base.metadata``) discovers all tables automatically.
"""

from app.models.profile import UserInsight, UserInterest, UserProfile

__all__ = [
    "UserProfile",
    "UserInterest",
    "UserInsight",
]
