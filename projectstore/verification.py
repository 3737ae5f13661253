"""Server-side confirmation of payment references.

Used on the return-URL path, where ``reference`` and ``project`` arrive as
query parameters and cannot be trusted on their own. Every failure mode
(network error, non-2xx, malformed body, ``verified`` not exactly true)
counts as unverified.
"""
import logging
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

import requests

from .exceptions import GatewayUnavailableError

RETURN_PARAMS = ('reference', 'project')


def return_params(args):
    """``(reference, project_id)`` when both are present in ``args``, else ``None``."""
    reference = (args.get('reference') or '').strip()
    project_id = (args.get('project') or '').strip()
    if reference and project_id:
        return reference, project_id
    return None


def strip_return_params(url):
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in RETURN_PARAMS]
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


class RemoteVerifier:
    """POSTs ``{"reference": ...}`` to a verification endpoint answering ``{"verified": bool}``."""

    def __init__(self, url, timeout=10, http=None):
        self.url = url
        self.timeout = timeout
        self.http = http or requests

    def verify(self, reference):
        response = self.http.post(self.url, json={'reference': reference}, timeout=self.timeout)
        response.raise_for_status()
        return response.json().get('verified') is True


class PaystackVerifier:
    """Checks a reference against the Paystack transaction API."""

    def __init__(self, secret_key, api_url='https://api.paystack.co', timeout=10, http=None):
        self.secret_key = secret_key
        self.api_url = api_url.rstrip('/')
        self.timeout = timeout
        self.http = http or requests

    def verify(self, reference):
        if not self.secret_key:
            raise GatewayUnavailableError('Paystack secret key is not configured')
        response = self.http.get(
            f"{self.api_url}/transaction/verify/{quote(reference, safe='')}",
            headers={'Authorization': f'Bearer {self.secret_key}'},
            timeout=self.timeout,
        )
        response.raise_for_status()
        body = response.json()
        data = body.get('data') or {}
        return body.get('status') is True and data.get('status') == 'success'


class VerificationReconciler:

    def __init__(self, verifier, logger=None):
        self.verifier = verifier
        self.logger = logger or logging.getLogger(__name__)

    def verify(self, reference):
        try:
            verified = self.verifier.verify(reference) is True
        except (requests.exceptions.RequestException, ValueError, AttributeError, GatewayUnavailableError) as e:
            self.logger.error(f"Verification of reference {reference} failed: {e}")
            return False
        self.logger.info(f"Reference {reference} verified={verified}")
        return verified
