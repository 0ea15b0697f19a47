from __future__ import annotations

from ..extensions import db
from wallet.time_utils import to_utc_z


class Product(db.Model):
    """
    Sellable catalog item.

    COST: cost_price_cents is a weighted average maintained by purchase
    processing only (stock_service.apply_purchase).

    STOCK: stock_quantity never goes below zero for tracked products.
    Stockless and service products skip stock accounting entirely.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Authoritative storage in cents
    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_stockless = db.Column(db.Boolean, nullable=False, default=False)
    is_service = db.Column(db.Boolean, nullable=False, default=False)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    barcodes = db.relationship(
        "ProductBarcode",
        back_populates="product",
        cascade="all, delete-orphan",
        lazy=True,
        order_by="ProductBarcode.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def tracks_stock(self) -> bool:
        return not (self.is_stockless or self.is_service)

    def add_barcode(self, code: str) -> "ProductBarcode":
        """Attach a barcode; duplicates within this product are rejected case-insensitively."""
        value = (code or "").strip()
        if not value:
            raise ValueError("barcode cannot be blank")
        if any(b.barcode.lower() == value.lower() for b in self.barcodes):
            raise ValueError(f"barcode {value!r} already assigned to this product")
        barcode = ProductBarcode(barcode=value, barcode_normalized=value.lower())
        self.barcodes.append(barcode)
        return barcode

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.stock_quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "cost_price_cents": self.cost_price_cents,
            "price_cents": self.price_cents,
            "stock_quantity": self.stock_quantity,
            "is_active": self.is_active,
            "is_stockless": self.is_stockless,
            "is_service": self.is_service,
            "barcodes": [b.barcode for b in self.barcodes],
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }


class ProductBarcode(db.Model):
    __tablename__ = "product_barcodes"
    __table_args__ = (
        db.UniqueConstraint("product_id", "barcode_normalized", name="uq_product_barcodes_product_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    barcode = db.Column(db.String(128), nullable=False)
    # Lower-cased copy backing the per-product uniqueness constraint
    barcode_normalized = db.Column(db.String(128), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", back_populates="barcodes")
