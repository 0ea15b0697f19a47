from __future__ import annotations

from ..extensions import db
from wallet.time_utils import to_utc_z


ROLE_CUSTOMER = "CUSTOMER"
ROLE_DRIVER = "DRIVER"
ROLE_EMPLOYEE = "EMPLOYEE"
ROLE_ADMIN = "ADMIN"
ROLE_SYSTEM = "SYSTEM"

VALID_ROLES = [ROLE_CUSTOMER, ROLE_DRIVER, ROLE_EMPLOYEE, ROLE_ADMIN, ROLE_SYSTEM]


class Person(db.Model):
    """
    Anyone the ledger tracks money or deliveries for.

    Customers and drivers are created implicitly when a sale or payment
    names someone unknown; employees and admins are created explicitly and
    are the only roles allowed through the credential check.

    Balance, spend, profit and delivery counts are derived from transactions
    and payments (see person_service); nothing money-related is stored here.
    """
    __tablename__ = "people"
    __table_args__ = (
        db.UniqueConstraint("username", name="uq_people_username"),
        db.Index("ix_people_role_phone", "role", "phone"),
        db.Index("ix_people_role_name", "role", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(16), nullable=False, default=ROLE_CUSTOMER, index=True)
    phone = db.Column(db.String(32), nullable=True)

    # Credential check only (bcrypt hashes, never plaintext)
    username = db.Column(db.String(64), nullable=True)
    password_hash = db.Column(db.String(255), nullable=True)
    passcode_hash = db.Column(db.String(255), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Person id={self.id} name={self.name!r} role={self.role}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role,
            "phone": self.phone,
            "username": self.username,
            "has_passcode": self.passcode_hash is not None,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
