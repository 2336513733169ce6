from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, JSON
from datetime import datetime
import uuid

from database import Base


def _new_id() -> str:
    return uuid.uuid4().hex


class Principal(Base):
    """
    Identity-provider principal: the login credential for an account.
    The UserRecord for the same person shares this id.
    """
    __tablename__ = "principals"

    id = Column(String, primary_key=True, default=_new_id)
    email = Column(String, unique=True, nullable=False, index=True)
    hashed_password = Column(String, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class UserRecord(Base):
    """
    Account state for one principal: trial window, subscription fields
    mirrored from the billing provider, and the soft-delete marker.
    """
    __tablename__ = "users"

    id = Column(String, primary_key=True)

    # Trial and access
    trial_start_at = Column(DateTime, nullable=True)
    trial_end_at = Column(DateTime, nullable=True)
    subscription_status = Column(String, default="none", nullable=False)
    has_written_first_entry = Column(Boolean, default=False, nullable=False)
    pro_override = Column(Boolean, default=False, nullable=False)

    # Billing provider linkage
    billing_customer_id = Column(String, nullable=True, index=True)
    billing_subscription_id = Column(String, nullable=True)
    billing_price_id = Column(String, nullable=True)
    billing_current_period_end = Column(DateTime, nullable=True)
    billing_cancel_at_period_end = Column(Boolean, default=False, nullable=False)

    # Grace window marker; set means the account is pending deletion
    scheduled_for_deletion_at = Column(DateTime, nullable=True, index=True)

    stickers = Column(JSON, default=list, nullable=False)
    settings = Column(JSON, default=dict, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def to_dict(self) -> dict:
        """JSON-friendly snapshot, used for caching and before/after diffs."""
        def _iso(value):
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "trial_start_at": _iso(self.trial_start_at),
            "trial_end_at": _iso(self.trial_end_at),
            "subscription_status": self.subscription_status,
            "has_written_first_entry": bool(self.has_written_first_entry),
            "pro_override": bool(self.pro_override),
            "billing_customer_id": self.billing_customer_id,
            "billing_subscription_id": self.billing_subscription_id,
            "billing_price_id": self.billing_price_id,
            "billing_current_period_end": _iso(self.billing_current_period_end),
            "billing_cancel_at_period_end": bool(self.billing_cancel_at_period_end),
            "scheduled_for_deletion_at": _iso(self.scheduled_for_deletion_at),
            "stickers": list(self.stickers or []),
        }


class JournalEntry(Base):
    """
    A journal entry. Only the fields the account lifecycle touches are
    modelled in detail; the rich text is stored opaque.
    """
    __tablename__ = "entries"

    id = Column(String, primary_key=True, default=_new_id)
    user_id = Column(String, nullable=False, index=True)
    text = Column(Text, default="", nullable=False)
    photos = Column(JSON, default=list, nullable=False)
    image_urls = Column(JSON, default=list, nullable=False)
    sticker_id = Column(String, nullable=True)
    mood = Column(Integer, nullable=True)
    entry_date = Column(DateTime, default=datetime.utcnow, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
