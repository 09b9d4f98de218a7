from __future__ import annotations

from ..extensions import db
from ..time_utils import isoformat_utc

EXPENSE_CATEGORIES = (
    "DINNER",
    "OFFICE_SUPPLIES",
    "TRANSPORTATION",
    "UTILITIES",
    "MARKETING",
    "MAINTENANCE",
    "MISCELLANEOUS",
    "INCOME",
)
CATEGORY_INCOME = "INCOME"
CATEGORY_MISCELLANEOUS = "MISCELLANEOUS"


class Expense(db.Model):
    """
    Company ledger row.

    SIGN CONVENTION:
    - amount_cents > 0: expense (cash outflow)
    - amount_cents < 0: income (sale revenue, cost reallocated on stock removal)

    Rows written by inventory actions are append-only and created in the same
    DB transaction as the balance change they describe.
    """
    __tablename__ = "expenses"
    __table_args__ = (
        db.Index("ix_expenses_company_date", "company_id", "date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id", ondelete="SET NULL"), nullable=True, index=True)

    description = db.Column(db.String(255), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="SRD")
    category = db.Column(db.String(32), nullable=False, default=CATEGORY_MISCELLANEOUS, index=True)
    notes = db.Column(db.Text, nullable=True)

    date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    company = db.relationship("Company", backref=db.backref("expenses", lazy=True))

    def __repr__(self) -> str:
        return f"<Expense id={self.id} amount_cents={self.amount_cents} currency={self.currency}>"

    @property
    def is_income(self) -> bool:
        return self.amount_cents < 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "item_id": self.item_id,
            "description": self.description,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "category": self.category,
            "notes": self.notes,
            "is_income": self.is_income,
            "date": isoformat_utc(self.date),
            "created_at": isoformat_utc(self.created_at),
        }
