from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class TransferDocument(db.Model):
    """
    Stock transfer between two locations.

    Stock effects are applied when the document is committed, re-applied
    (old reversed, new applied) on update and reversed on delete, always
    inside one DB transaction.
    """
    __tablename__ = "transfer_documents"
    __table_args__ = (
        db.CheckConstraint("source_location_id <> target_location_id", name="ck_transfer_distinct_locations"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_number = db.Column(db.String(64), nullable=False, unique=True)
    date = db.Column(db.DateTime, nullable=False, index=True)
    source_location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)
    target_location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)
    note = db.Column(db.String(255), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "TransferItem",
        back_populates="transfer",
        lazy="selectin",
        order_by="TransferItem.id",
        cascade="all, delete-orphan",
    )
    source_location = db.relationship("Location", foreign_keys=[source_location_id])
    target_location = db.relationship("Location", foreign_keys=[target_location_id])
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_number": self.document_number,
            "date": to_utc_z(self.date),
            "source_location_id": self.source_location_id,
            "target_location_id": self.target_location_id,
            "note": self.note,
            "items": [item.to_dict() for item in self.items],
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }


class TransferItem(db.Model):
    __tablename__ = "transfer_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    transfer_id = db.Column(db.Integer, db.ForeignKey("transfer_documents.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    transfer = db.relationship("TransferDocument", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transfer_id": self.transfer_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
        }
