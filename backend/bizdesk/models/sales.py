from __future__ import annotations

from ..extensions import db
from ..services.sale_totals import compute_totals, SaleTotals
from bizdesk.time_utils import to_utc_z, utcnow


SALE_STATUS_COMPLETED = "completed"
SALE_STATUS_PENDING = "pending"
SALE_STATUS_CANCELLED = "cancelled"
SALE_STATUS_REFUNDED = "refunded"
TERMINAL_SALE_STATUSES = (SALE_STATUS_CANCELLED, SALE_STATUS_REFUNDED)


class Sale(db.Model):
    """
    Sale aggregate: line items, derived totals, payment history.

    DERIVED FIELDS: subtotal_cents, discount_amount_cents, total_amount_cents,
    balance_cents and payment_status are outputs of compute_totals() and are
    refreshed by recompute_totals() before every write. Services never assign
    them directly.

    LEDGER: amount_paid_cents always equals the sum of SalePayment.amount_cents.
    Both change together inside one transaction in sales_service.

    LIFECYCLE: completed/pending -> cancelled | refunded (terminal).
    Sales are never deleted, only soft-marked with is_deleted.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("sale_number", name="uq_sales_sale_number"),
        db.Index("ix_sales_seller_deleted_date", "seller_id", "is_deleted", "sale_date"),
        db.Index("ix_sales_seller_status", "seller_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable identifier (e.g., "SALE-LX2A9Q1B-7K3ZD")
    sale_number = db.Column(db.String(64), nullable=False)

    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    customer_name = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_address = db.Column(db.String(512), nullable=True)

    # Sale-level adjustments (inputs)
    discount = db.Column(db.Integer, nullable=False, default=0)  # cents when fixed, percent when percentage
    discount_type = db.Column(db.String(16), nullable=False, default="fixed")
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    shipping_fee_cents = db.Column(db.Integer, nullable=False, default=0)

    # Derived (see recompute_totals)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    balance_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_status = db.Column(db.String(16), nullable=False, default="unpaid", index=True)

    # Sum of payments
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_method = db.Column(db.String(32), nullable=False, default="cash")
    status = db.Column(db.String(16), nullable=False, default=SALE_STATUS_COMPLETED, index=True)
    channel = db.Column(db.String(32), nullable=False, default="in_store")
    notes = db.Column(db.Text, nullable=True)

    delivery_address = db.Column(db.String(512), nullable=True)
    delivery_status = db.Column(db.String(16), nullable=False, default="none")

    invoice_number = db.Column(db.String(64), nullable=True)
    invoice_issued_at = db.Column(db.DateTime(timezone=True), nullable=True)

    sale_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    is_deleted = db.Column(db.Boolean, nullable=False, default=False)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancellation_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    seller = db.relationship("User", foreign_keys=[seller_id], backref=db.backref("sales", lazy=True))
    cancelled_by = db.relationship("User", foreign_keys=[cancelled_by_user_id])
    items = db.relationship(
        "SaleItem",
        back_populates="sale",
        order_by="SaleItem.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    payments = db.relationship(
        "SalePayment",
        back_populates="sale",
        order_by="SalePayment.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_SALE_STATUSES

    def totals(self) -> SaleTotals:
        return compute_totals(
            self.items,
            discount=self.discount,
            discount_type=self.discount_type,
            tax=self.tax_cents,
            shipping_fee=self.shipping_fee_cents,
            amount_paid=self.amount_paid_cents,
        )

    def recompute_totals(self) -> SaleTotals:
        """Refresh every derived column from items, adjustments and amount paid."""
        totals = self.totals()
        self.subtotal_cents = totals.subtotal
        self.discount_amount_cents = totals.discount_amount
        self.total_amount_cents = totals.total_amount
        self.balance_cents = totals.balance
        self.payment_status = totals.payment_status
        return totals

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_number": self.sale_number,
            "seller_id": self.seller_id,
            "customer": {
                "name": self.customer_name,
                "phone": self.customer_phone,
                "email": self.customer_email,
                "address": self.customer_address,
            },
            "items": [item.to_dict() for item in self.items],
            "subtotal_cents": self.subtotal_cents,
            "discount": self.discount,
            "discount_type": self.discount_type,
            "discount_amount_cents": self.discount_amount_cents,
            "tax_cents": self.tax_cents,
            "shipping_fee_cents": self.shipping_fee_cents,
            "total_amount_cents": self.total_amount_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "balance_cents": self.balance_cents,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "payments": [payment.to_dict() for payment in self.payments],
            "status": self.status,
            "channel": self.channel,
            "notes": self.notes,
            "delivery": {
                "address": self.delivery_address,
                "status": self.delivery_status,
            },
            "invoice": {
                "number": self.invoice_number,
                "issued_at": to_utc_z(self.invoice_issued_at) if self.invoice_issued_at else None,
            },
            "sale_date": to_utc_z(self.sale_date),
            "is_deleted": self.is_deleted,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "cancellation_reason": self.cancellation_reason,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class SaleItem(db.Model):
    """
    Line item on a sale.

    product_name/product_code are snapshots taken at sale time; later edits
    to the Product never alter historical sales. product_id is a lookup
    reference only.
    """
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_sale_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    product_name = db.Column(db.String(255), nullable=False)
    product_code = db.Column(db.String(64), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    subtotal_cents = db.Column(db.Integer, nullable=False)

    sale = db.relationship("Sale", back_populates="items")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "position": self.position,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_code": self.product_code,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "subtotal_cents": self.subtotal_cents,
        }


class SalePayment(db.Model):
    """
    Append-only payment history for a sale.

    IMMUTABLE: Records are never updated or deleted. A cancelled sale keeps
    its payments for audit.
    """
    __tablename__ = "sale_payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_sale_payments_amount_positive"),
        db.Index("ix_sale_payments_sale_paid", "sale_id", "paid_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(32), nullable=False)
    reference = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.String(512), nullable=True)

    recorded_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    sale = db.relationship("Sale", back_populates="payments")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "amount_cents": self.amount_cents,
            "method": self.method,
            "reference": self.reference,
            "notes": self.notes,
            "recorded_by_user_id": self.recorded_by_user_id,
            "paid_at": to_utc_z(self.paid_at),
        }
