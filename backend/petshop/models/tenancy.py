from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .common import new_id


class Company(db.Model):
    """
    Tenant root: the legal entity that owns stores, catalog and invoices.

    nif is the tax identifier printed on issued invoices; issuing requires it.
    """
    __tablename__ = "companies"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(255), nullable=False)
    nif = db.Column(db.String(32), nullable=True)
    address = db.Column(db.String(255), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<Company id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "nif": self.nif,
            "address": self.address,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Store(db.Model):
    """
    Physical location of a company. Store ids double as the stock movement
    location_id.
    """
    __tablename__ = "stores"
    __table_args__ = (
        db.UniqueConstraint("company_id", "code", name="uq_stores_company_code"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    company_id = db.Column(db.String(36), db.ForeignKey("companies.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(16), nullable=False)
    timezone = db.Column(db.String(64), nullable=False, default="UTC")
    # {"monday": {"open": "09:00", "close": "19:00"}, ...}; a missing day is closed, NULL means no restriction
    opening_hours = db.Column(db.JSON, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    company = db.relationship("Company", backref=db.backref("stores", lazy=True))

    def __repr__(self) -> str:
        return f"<Store id={self.id} code={self.code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "code": self.code,
            "timezone": self.timezone,
            "opening_hours": self.opening_hours,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
