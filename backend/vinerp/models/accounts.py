from __future__ import annotations

from ..extensions import db


class Account(db.Model):
    """
    Chart-of-accounts node.

    TREE: parent_id forms a forest; level = parent.level + 1, capped at 7.

    SYSTEM LINK: selects where the node's own balance comes from
    (NONE uses manual_balance_cents). system_link_id optionally narrows the
    source to one bank / category / customer / expense category / register.
    A node's reported balance is its own value plus all children (rollup).
    """
    __tablename__ = "accounts"
    __table_args__ = (
        db.CheckConstraint("level >= 1 AND level <= 7", name="ck_accounts_level_range"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    level = db.Column(db.Integer, nullable=False, default=1)
    parent_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=True, index=True)
    system_link = db.Column(db.String(16), nullable=False, default="NONE")
    system_link_id = db.Column(db.Integer, nullable=True)
    manual_balance_cents = db.Column(db.Integer, nullable=False, default=0)

    children = db.relationship(
        "Account",
        backref=db.backref("parent", remote_side=[id]),
        order_by="Account.code",
        lazy="select",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "level": self.level,
            "parent_id": self.parent_id,
            "system_link": self.system_link,
            "system_link_id": self.system_link_id,
            "manual_balance_cents": self.manual_balance_cents,
        }
