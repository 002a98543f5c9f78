"""
Abstract base model with the small CRUD surface the services rely on.
"""

from typing import Any, Dict

from app.web.db import db


class BaseModel(db.Model):
    __abstract__ = True

    @classmethod
    def create(cls, commit: bool = True, **kwargs):
        """Create and persist a new row."""
        instance = cls(**kwargs)
        return instance.save(commit=commit)

    def save(self, commit: bool = True):
        db.session.add(self)
        if commit:
            db.session.commit()
        return self

    def update(self, commit: bool = True, **kwargs):
        """Apply a patch of column values and persist it."""
        for attr, value in kwargs.items():
            if not hasattr(self, attr):
                raise AttributeError(f"{type(self).__name__} has no attribute '{attr}'")
            setattr(self, attr, value)
        return self.save(commit=commit)

    def delete(self, commit: bool = True):
        db.session.delete(self)
        if commit:
            db.session.commit()

    def as_dict(self) -> Dict[str, Any]:
        raise NotImplementedError
