from __future__ import annotations

from ..extensions import db
from bizdesk.time_utils import to_utc_z, utcnow


PRODUCT_STATUS_IN_STOCK = "in_stock"
PRODUCT_STATUS_LOW_STOCK = "low_stock"
PRODUCT_STATUS_OUT_OF_STOCK = "out_of_stock"
DEFAULT_MIN_STOCK_LEVEL = 10

MOVEMENT_ADDED = "added"
MOVEMENT_REMOVED = "removed"
MOVEMENT_SOLD = "sold"
MOVEMENT_RETURNED = "returned"
MOVEMENT_ADJUSTED = "adjusted"
MOVEMENT_TYPES = (MOVEMENT_ADDED, MOVEMENT_REMOVED, MOVEMENT_SOLD, MOVEMENT_RETURNED, MOVEMENT_ADJUSTED)


class Product(db.Model):
    """
    Product master data with its on-hand quantity.

    OWNER SCOPE: Products belong to one business account (owner_id).
    product_code is unique per owner, not globally.

    QUANTITY: `quantity` is the contended resource during sales. It is never
    negative; every change goes through inventory_service and appends a
    StockMovement in the same transaction. version_id turns a lost update
    into StaleDataError at flush time.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("owner_id", "product_code", name="uq_products_owner_code"),
        db.CheckConstraint("quantity >= 0", name="ck_products_quantity_non_negative"),
        db.Index("ix_products_owner_status", "owner_id", "status"),
        db.Index("ix_products_owner_active", "owner_id", "is_active"),
        db.Index("ix_products_total_sold", "total_sold"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    product_code = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(120), nullable=True)
    sale_type = db.Column(db.String(16), nullable=False, default="unit")  # unit, bulk, wholesale, retail

    # Authoritative storage in cents
    unit_price_cents = db.Column(db.Integer, nullable=False)
    cost_price_cents = db.Column(db.Integer, nullable=True)
    wholesale_price_cents = db.Column(db.Integer, nullable=True)
    currency = db.Column(db.String(8), nullable=False, default="NGN")

    quantity = db.Column(db.Integer, nullable=False, default=0)
    min_stock_level = db.Column(db.Integer, nullable=False, default=DEFAULT_MIN_STOCK_LEVEL)
    status = db.Column(db.String(16), nullable=False, default=PRODUCT_STATUS_OUT_OF_STOCK)

    sku = db.Column(db.String(64), nullable=True)
    barcode = db.Column(db.String(64), nullable=True)
    unit = db.Column(db.String(32), nullable=False, default="piece")
    notes = db.Column(db.Text, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Sales analytics, maintained in the same transaction as each sale/cancel
    total_sold = db.Column(db.Integer, nullable=False, default=0)
    total_revenue_cents = db.Column(db.Integer, nullable=False, default=0)
    average_sale_price_cents = db.Column(db.Integer, nullable=False, default=0)
    last_sold_at = db.Column(db.DateTime(timezone=True), nullable=True)
    popularity_score = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    owner = db.relationship("User", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} code={self.product_code!r} qty={self.quantity} owner_id={self.owner_id}>"

    def recompute_status(self) -> str:
        """Derive stock status from quantity vs min_stock_level."""
        if self.quantity == 0:
            self.status = PRODUCT_STATUS_OUT_OF_STOCK
        elif self.quantity <= (self.min_stock_level or 0):
            self.status = PRODUCT_STATUS_LOW_STOCK
        else:
            self.status = PRODUCT_STATUS_IN_STOCK
        return self.status

    @property
    def total_value_cents(self) -> int:
        return (self.quantity or 0) * (self.cost_price_cents or self.unit_price_cents or 0)

    @property
    def profit_margin(self) -> float:
        """Margin over cost, in percent."""
        if not self.cost_price_cents:
            return 0.0
        return round((self.unit_price_cents - self.cost_price_cents) / self.cost_price_cents * 100, 2)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "product_code": self.product_code,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "sale_type": self.sale_type,
            "unit_price_cents": self.unit_price_cents,
            "cost_price_cents": self.cost_price_cents,
            "wholesale_price_cents": self.wholesale_price_cents,
            "currency": self.currency,
            "quantity": self.quantity,
            "min_stock_level": self.min_stock_level,
            "status": self.status,
            "total_value_cents": self.total_value_cents,
            "profit_margin": self.profit_margin,
            "is_low_stock": self.status == PRODUCT_STATUS_LOW_STOCK,
            "is_out_of_stock": self.quantity == 0,
            "sku": self.sku,
            "barcode": self.barcode,
            "unit": self.unit,
            "notes": self.notes,
            "is_active": self.is_active,
            "analytics": {
                "total_sold": self.total_sold,
                "total_revenue_cents": self.total_revenue_cents,
                "average_sale_price_cents": self.average_sale_price_cents,
                "last_sold_at": to_utc_z(self.last_sold_at) if self.last_sold_at else None,
                "popularity_score": self.popularity_score,
            },
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Stock history: one row per quantity-changing event on a product.

    IMMUTABLE: Rows are appended by inventory_service and never updated or
    deleted. previous_quantity/new_quantity record the product's quantity on
    either side of the change.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_occurred", "product_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)  # added, removed, sold, returned, adjusted
    quantity = db.Column(db.Integer, nullable=False)
    previous_quantity = db.Column(db.Integer, nullable=False)
    new_quantity = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=True)

    performed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    product = db.relationship(
        "Product",
        backref=db.backref("stock_history", lazy=True, order_by="StockMovement.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "type": self.type,
            "quantity": self.quantity,
            "previous_quantity": self.previous_quantity,
            "new_quantity": self.new_quantity,
            "reason": self.reason,
            "performed_by_user_id": self.performed_by_user_id,
            "sale_id": self.sale_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
