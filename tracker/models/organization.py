"""
Organization model — the tenant boundary.

Every workflow row (stages, sub-stages, orders, items, history) belongs to
exactly one organization. Row-level security itself lives upstream; the
engine only ever filters by ``organization_id``.
"""

from tracker.models import db
from tracker.models.base import _utcnow, _uuid, isoformat


class Organization(db.Model):
    __tablename__ = "organizations"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    is_active = db.Column(db.Boolean, default=True)
    settings = db.Column(db.JSON, default=dict)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "is_active": self.is_active,
            "settings": self.settings or {},
            "created_at": isoformat(self.created_at),
        }

    def __repr__(self):
        return f"<Organization {self.slug}>"
