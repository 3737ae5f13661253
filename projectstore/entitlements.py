import json

from .catalog import Project


class EntitlementStore:
    """Project ids this device has paid for, plus the most recent purchase.

    Owned ids are a JSON array under ``storage_key`` in durable device
    storage. The last purchased project is kept as JSON in the shorter-lived
    session storage so "download again" works without a catalog lookup.
    Unreadable stored data counts as no entitlements.
    """

    def __init__(self, durable, session, storage_key, last_purchase_key='last_purchase'):
        self.durable = durable
        self.session = session
        self.storage_key = storage_key
        self.last_purchase_key = last_purchase_key

    def owned_ids(self):
        raw = self.durable.get(self.storage_key)
        if not raw:
            return []
        try:
            ids = json.loads(raw)
        except ValueError:
            return []
        if not isinstance(ids, list):
            return []
        return [i for i in ids if isinstance(i, str)]

    def has(self, project_id):
        return project_id in self.owned_ids()

    def record(self, project_id, project=None):
        owned = self.owned_ids()
        if project_id not in owned:
            owned.append(project_id)
            self.durable.set(self.storage_key, json.dumps(owned))
        if project is not None:
            self.session.set(self.last_purchase_key, json.dumps(project.to_dict()))

    def last_purchase(self):
        raw = self.session.get(self.last_purchase_key)
        if not raw:
            return None
        try:
            return Project.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError):
            return None
