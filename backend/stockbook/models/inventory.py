from __future__ import annotations

from ..extensions import db
from ..time_utils import isoformat_utc

# Item / batch status lifecycle: ToOrder -> Ordered -> Arrived -> Sold (Sold -> Arrived on restock)
STATUS_TO_ORDER = "ToOrder"
STATUS_ORDERED = "Ordered"
STATUS_ARRIVED = "Arrived"
STATUS_SOLD = "Sold"
ITEM_STATUSES = (STATUS_TO_ORDER, STATUS_ORDERED, STATUS_ARRIVED, STATUS_SOLD)

# Statuses that carry physical stock
STOCK_BEARING_STATUSES = (STATUS_ARRIVED, STATUS_SOLD)
PRE_STOCK_STATUSES = (STATUS_TO_ORDER, STATUS_ORDERED)


class Item(db.Model):
    """
    Sellable unit owned by one company.

    QUANTITY OWNERSHIP:
    - use_batch_system=False: quantity_in_stock is mutated directly by stock actions.
    - use_batch_system=True: quantity_in_stock is derived, always SUM(stock_batches.quantity),
      and only written by the batch reconciler.

    freight_cost_usd_cents is the per-order total, not per unit.
    """
    __tablename__ = "items"
    __table_args__ = (
        db.Index("ix_items_company_name", "company_id", "name"),
        db.Index("ix_items_company_status", "company_id", "status"),
        db.CheckConstraint("quantity_in_stock >= 0", name="ck_items_quantity_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)

    name = db.Column(db.String(100), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=STATUS_TO_ORDER, index=True)
    quantity_in_stock = db.Column(db.Integer, nullable=False, default=0)

    cost_per_unit_usd_cents = db.Column(db.Integer, nullable=False, default=0)
    freight_cost_usd_cents = db.Column(db.Integer, nullable=False, default=0)
    selling_price_srd_cents = db.Column(db.Integer, nullable=False, default=0)

    use_batch_system = db.Column(db.Boolean, nullable=False, default=False)

    supplier = db.Column(db.String(255), nullable=True)
    order_number = db.Column(db.String(64), nullable=True)
    order_date = db.Column(db.DateTime(timezone=True), nullable=True)
    expected_arrival = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True, index=True)
    assigned_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    company = db.relationship("Company", backref=db.backref("items", lazy=True))
    location = db.relationship("Location")
    assigned_user = db.relationship("User")

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Item id={self.id} name={self.name!r} qty={self.quantity_in_stock} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "status": self.status,
            "quantity_in_stock": self.quantity_in_stock,
            "cost_per_unit_usd_cents": self.cost_per_unit_usd_cents,
            "freight_cost_usd_cents": self.freight_cost_usd_cents,
            "selling_price_srd_cents": self.selling_price_srd_cents,
            "use_batch_system": self.use_batch_system,
            "supplier": self.supplier,
            "order_number": self.order_number,
            "order_date": isoformat_utc(self.order_date),
            "expected_arrival": isoformat_utc(self.expected_arrival),
            "notes": self.notes,
            "location_id": self.location_id,
            "assigned_user_id": self.assigned_user_id,
            "version_id": self.version_id,
            "created_at": isoformat_utc(self.created_at),
            "updated_at": isoformat_utc(self.updated_at),
        }


class StockBatch(db.Model):
    """
    Discrete lot of an item with its own quantity, status and cost snapshot.

    For batch-tracked items: SUM(quantity) over an item's batches == item.quantity_in_stock.
    """
    __tablename__ = "stock_batches"
    __table_args__ = (
        db.Index("ix_stock_batches_item_created", "item_id", "created_at"),
        db.CheckConstraint("quantity >= 0", name="ck_stock_batches_quantity_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True, index=True)
    assigned_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    original_quantity = db.Column(db.Integer, nullable=True)
    status = db.Column(db.String(16), nullable=False, default=STATUS_TO_ORDER, index=True)

    cost_per_unit_usd_cents = db.Column(db.Integer, nullable=False, default=0)
    freight_cost_usd_cents = db.Column(db.Integer, nullable=False, default=0)

    order_date = db.Column(db.DateTime(timezone=True), nullable=True)
    expected_arrival = db.Column(db.DateTime(timezone=True), nullable=True)
    arrived_date = db.Column(db.DateTime(timezone=True), nullable=True)
    order_number = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    item = db.relationship("Item", backref=db.backref("batches", lazy=True))
    location = db.relationship("Location")

    def __repr__(self) -> str:
        return f"<StockBatch id={self.id} item_id={self.item_id} qty={self.quantity} status={self.status}>"

    def total_cost_usd_cents(self) -> int:
        return self.cost_per_unit_usd_cents * self.quantity + self.freight_cost_usd_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "location_id": self.location_id,
            "location_name": self.location.name if self.location else None,
            "assigned_user_id": self.assigned_user_id,
            "quantity": self.quantity,
            "original_quantity": self.original_quantity,
            "status": self.status,
            "cost_per_unit_usd_cents": self.cost_per_unit_usd_cents,
            "freight_cost_usd_cents": self.freight_cost_usd_cents,
            "order_date": isoformat_utc(self.order_date),
            "expected_arrival": isoformat_utc(self.expected_arrival),
            "arrived_date": isoformat_utc(self.arrived_date),
            "order_number": self.order_number,
            "notes": self.notes,
            "created_at": isoformat_utc(self.created_at),
            "updated_at": isoformat_utc(self.updated_at),
        }
