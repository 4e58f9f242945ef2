# exchange_sync/models/contact.py

from .base import BaseModel, db


class Contact(BaseModel):
    """Person or company record mirrored from PracticePanther contacts."""

    __tablename__ = "contacts"

    id = db.Column(db.Integer, primary_key=True)
    pp_contact_id = db.Column(db.String(64), unique=True, nullable=True, index=True)
    first_name = db.Column(db.String(100), nullable=False, default="")
    last_name = db.Column(db.String(100), nullable=False, default="")
    email = db.Column(db.String(255), nullable=True, index=True)
    phone = db.Column(db.String(50), nullable=True)
    company = db.Column(db.String(255), nullable=True)
    address = db.Column(db.Text, nullable=True)

    # Full remote payload kept for audit/debugging
    pp_data = db.Column(db.JSON, nullable=True)
    last_sync_at = db.Column(db.DateTime(timezone=True), nullable=True)

    participations = db.relationship("ExchangeParticipant", back_populates="contact")

    def __repr__(self):
        return f"<Contact {self.first_name} {self.last_name} pp={self.pp_contact_id}>"
