"""
Storage Models Package.

Declarative base shared by every domain model. Domain models live
next to their component (moderation/models.py, analytics/models.py,
engagement/models.py, performance/models.py) and all register on
this Base so that one ``create_all`` builds the full schema.
"""

from storage.models.base import Base, TimestampMixin, new_id

__all__ = ["Base", "TimestampMixin", "new_id"]
