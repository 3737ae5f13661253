"""String key/value storage scopes used by the entitlement and transaction stores.

``DeviceStorage`` is durable and scoped to one device cookie; writes are
committed before ``set`` returns. ``SessionStorage`` lives in the signed Flask
session cookie and ends with the browser session.
"""
import uuid

from flask import session as flask_session

from app import db
from .models import DeviceValue


def new_device_id():
    return str(uuid.uuid4())


class DeviceStorage:

    def __init__(self, device_id):
        self.device_id = device_id

    def _row(self, key):
        return DeviceValue.query.filter_by(device_id=self.device_id, key=key).first()

    def get(self, key):
        row = self._row(key)
        return row.value if row else None

    def set(self, key, value):
        row = self._row(key)
        if row is None:
            db.session.add(DeviceValue(device_id=self.device_id, key=key, value=value))
        else:
            row.value = value
        db.session.commit()

    def delete(self, key):
        row = self._row(key)
        if row is not None:
            db.session.delete(row)
            db.session.commit()


class SessionStorage:

    def __init__(self, session=None):
        self.session = flask_session if session is None else session

    def get(self, key):
        return self.session.get(key)

    def set(self, key, value):
        self.session[key] = value

    def delete(self, key):
        self.session.pop(key, None)
