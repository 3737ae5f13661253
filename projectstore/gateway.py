"""Paystack inline checkout handoff.

The widget itself runs in the browser; this module only decides what it is
configured with. The widget reports back through the callback and close
hooks wired up in the checkout template.
"""
import logging
import secrets
import string
import time

import requests

from .exceptions import GatewayUnavailableError

REFERENCE_ALPHABET = string.ascii_uppercase + string.digits


def generate_reference(now=None):
    """A fresh payment reference, ``PRJ_<epoch ms>_<6 random chars>``."""
    millis = int((time.time() if now is None else now) * 1000)
    suffix = ''.join(secrets.choice(REFERENCE_ALPHABET) for _ in range(6))
    return f'PRJ_{millis}_{suffix}'


def to_minor_units(amount):
    return int(amount) * 100


class PublicKeyResolver:
    """Finds the Paystack public key: config endpoint first, inline setting second."""

    def __init__(self, config_url=None, fallback_key='', timeout=5, http=None, logger=None):
        self.config_url = config_url
        self.fallback_key = fallback_key
        self.timeout = timeout
        self.http = http or requests
        self.logger = logger or logging.getLogger(__name__)
        self._key = None

    def _fetch(self):
        try:
            response = self.http.get(self.config_url, timeout=self.timeout)
            response.raise_for_status()
            return response.json().get('PAYSTACK_PUBLIC_KEY') or None
        except (requests.exceptions.RequestException, ValueError, AttributeError) as e:
            self.logger.warning(f"Config endpoint {self.config_url} unavailable: {e}")
            return None

    def resolve(self):
        if self._key:
            return self._key
        key = self._fetch() if self.config_url else None
        if not key:
            key = self.fallback_key or None
        if not key:
            raise GatewayUnavailableError('Payment system not available. Please refresh and try again later.')
        self._key = key
        return key


class PaystackCheckout:

    def __init__(self, key_resolver, currency='NGN'):
        self.key_resolver = key_resolver
        self.currency = currency

    def configure(self, transaction, project):
        """Options for ``PaystackPop.setup`` (callbacks are added by the template)."""
        return {
            'key': self.key_resolver.resolve(),
            'email': transaction.buyer_email,
            'amount': to_minor_units(transaction.amount_expected),
            'currency': self.currency,
            'ref': transaction.reference,
            'metadata': {
                'custom_fields': [
                    {'display_name': 'Project', 'variable_name': 'project_name', 'value': project.name},
                    {'display_name': 'Project ID', 'variable_name': 'project_id', 'value': project.id},
                    {'display_name': 'Department', 'variable_name': 'department', 'value': project.department},
                    {'display_name': 'School', 'variable_name': 'school', 'value': project.school},
                ],
                'project_id': project.id,
            },
        }
