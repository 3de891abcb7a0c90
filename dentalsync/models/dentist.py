from dentalsync.extensions import db
from .base import TimestampMixin


class Dentist(db.Model, TimestampMixin):
    """Care-provider identity. Accounts and approval live outside this service."""
    __tablename__ = 'dentists'

    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(200))
    email = db.Column(db.String(120), unique=True)
    specialty = db.Column(db.String(100))

    def __repr__(self):
        return f"<Dentist {self.full_name} ({self.id})>"
