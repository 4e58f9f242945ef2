# exchange_sync/models/exchange.py

from enum import Enum as PyEnum

from sqlalchemy import Enum, Index

from .base import BaseModel, db


class ExchangeStatus(PyEnum):
    """Lifecycle stage of a 1031 exchange"""

    PENDING = "PENDING"
    DAY_45 = "45D"
    DAY_180 = "180D"
    COMPLETED = "COMPLETED"
    TERMINATED = "TERMINATED"


class ParticipantRole(PyEnum):
    """Role a participant plays on an exchange"""

    CLIENT = "client"
    COORDINATOR = "coordinator"


class Exchange(BaseModel):
    """Local representation of a PracticePanther matter."""

    __tablename__ = "exchanges"

    id = db.Column(db.Integer, primary_key=True)
    pp_matter_id = db.Column(db.String(64), unique=True, nullable=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    status = db.Column(
        Enum(ExchangeStatus, name="exchange_status_enum", values_callable=lambda enum: [e.value for e in enum]),
        nullable=False,
        default=ExchangeStatus.PENDING,
        index=True,
    )
    client_id = db.Column(db.Integer, db.ForeignKey("contacts.id", ondelete="SET NULL"), nullable=True, index=True)
    start_date = db.Column(db.DateTime(timezone=True), nullable=True)
    completion_date = db.Column(db.DateTime(timezone=True), nullable=True)
    identification_deadline = db.Column(db.Date, nullable=True)
    completion_deadline = db.Column(db.Date, nullable=True)
    exchange_value = db.Column(db.Float, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    pp_data = db.Column(db.JSON, nullable=True)
    last_sync_at = db.Column(db.DateTime(timezone=True), nullable=True)

    client = db.relationship("Contact", foreign_keys=[client_id])
    participants = db.relationship(
        "ExchangeParticipant",
        back_populates="exchange",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    tasks = db.relationship("Task", back_populates="exchange")

    def __repr__(self):
        return f"<Exchange {self.name} pp={self.pp_matter_id}>"


class ExchangeParticipant(BaseModel):
    """Link between an exchange and a contact or an internal user."""

    __tablename__ = "exchange_participants"

    id = db.Column(db.Integer, primary_key=True)
    exchange_id = db.Column(
        db.Integer, db.ForeignKey("exchanges.id", ondelete="CASCADE"), nullable=False, index=True
    )
    contact_id = db.Column(db.Integer, db.ForeignKey("contacts.id", ondelete="CASCADE"), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=True)
    role = db.Column(
        Enum(ParticipantRole, name="participant_role_enum", values_callable=lambda enum: [e.value for e in enum]),
        nullable=False,
    )
    permissions = db.Column(db.JSON, nullable=False, default=dict)

    exchange = db.relationship("Exchange", back_populates="participants")
    contact = db.relationship("Contact", back_populates="participations")
    user = db.relationship("User")

    __table_args__ = (
        db.UniqueConstraint("exchange_id", "contact_id", name="uq_exchange_participant_contact"),
        db.UniqueConstraint("exchange_id", "user_id", name="uq_exchange_participant_user"),
        Index("idx_exchange_participant_role", "exchange_id", "role"),
    )

    def __repr__(self):
        return f"<ExchangeParticipant exchange={self.exchange_id} role={self.role}>"
