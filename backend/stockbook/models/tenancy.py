from __future__ import annotations

from ..extensions import db
from ..time_utils import isoformat_utc


class Company(db.Model):
    """
    Multi-tenant root: every item, batch, location and ledger row belongs to
    exactly one Company.

    Cash balances are kept per currency in cents. They are only mutated by the
    ledger service; inventory actions never drive a balance below zero.
    stock_value_* are cached rollups refreshed by the valuation service.
    """
    __tablename__ = "companies"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_companies_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)

    cash_balance_srd_cents = db.Column(db.Integer, nullable=False, default=0)
    cash_balance_usd_cents = db.Column(db.Integer, nullable=False, default=0)
    stock_value_srd_cents = db.Column(db.Integer, nullable=False, default=0)
    stock_value_usd_cents = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Company id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "cash_balance_srd_cents": self.cash_balance_srd_cents,
            "cash_balance_usd_cents": self.cash_balance_usd_cents,
            "stock_value_srd_cents": self.stock_value_srd_cents,
            "stock_value_usd_cents": self.stock_value_usd_cents,
            "version_id": self.version_id,
            "created_at": isoformat_utc(self.created_at),
            "updated_at": isoformat_utc(self.updated_at),
        }


class Location(db.Model):
    """Storage location owned by a company. Names are unique within a company."""
    __tablename__ = "locations"
    __table_args__ = (
        db.UniqueConstraint("company_id", "name", name="uq_locations_company_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    company = db.relationship("Company", backref=db.backref("locations", lazy=True))

    def __repr__(self) -> str:
        return f"<Location id={self.id} name={self.name!r} company_id={self.company_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "description": self.description,
            "created_at": isoformat_utc(self.created_at),
        }


class User(db.Model):
    """Staff member items and batches can be assigned to. No login data lives here."""
    __tablename__ = "users"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=True, index=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "email": self.email,
        }
