# projectstore/models.py
from datetime import datetime
from app import db


class DeviceValue(db.Model):
    """One key/value pair stored for a device (browser profile)."""
    __tablename__ = 'device_value'
    __table_args__ = (db.UniqueConstraint('device_id', 'key', name='uq_device_value_key'),)

    id = db.Column(db.Integer, primary_key=True)
    device_id = db.Column(db.String(36), nullable=False, index=True)
    key = db.Column(db.String(120), nullable=False)
    value = db.Column(db.Text, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f'<DeviceValue {self.device_id}:{self.key}>'


class PaymentRecord(db.Model):
    """Ledger row for a purchase that reached the entitled state.

    Kept for support lookups only; entitlement is decided by the device storage.
    """
    __tablename__ = 'payment_record'

    id = db.Column(db.Integer, primary_key=True)
    reference = db.Column(db.String(64), nullable=False, index=True)
    project_id = db.Column(db.String(64), nullable=False)
    customer_email = db.Column(db.String(120), nullable=True)
    amount = db.Column(db.Integer, nullable=False)
    verified = db.Column(db.Boolean, default=False)
    device_id = db.Column(db.String(36), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<PaymentRecord {self.reference} for {self.project_id}>'
