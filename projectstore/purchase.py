"""Purchase state machine.

One ``PurchaseTransaction`` follows a single attempt to buy a project::

    INITIATED -> AWAITING_GATEWAY -> PAID_CLIENT_SIDE -> ENTITLED -> DELIVERED
                       |                    |
                       v                    +-> VERIFIED -> ENTITLED
                   CANCELLED                +-> VERIFICATION_FAILED

The in-page gateway callback goes straight from PAID_CLIENT_SIDE to
ENTITLED (the buyer's browser is trusted) unless ``require_verification`` is
set. The return-URL path always goes through the reconciler.

The orchestrator is the only writer of the entitlement store. The
entitlement write is committed before delivery starts, and a failed delivery
never takes the entitlement back.
"""
import json
import logging
import time
from dataclasses import dataclass, asdict, field
from enum import Enum
from typing import Optional

from .catalog import Project
from .delivery import Delivery
from .exceptions import (DeliveryError, InvalidEmailError, InvalidTransitionError,
                         ProjectNotFoundError, TransactionNotFoundError)
from .gateway import generate_reference


class PurchaseState(str, Enum):
    INITIATED = 'INITIATED'
    AWAITING_GATEWAY = 'AWAITING_GATEWAY'
    CANCELLED = 'CANCELLED'
    PAID_CLIENT_SIDE = 'PAID_CLIENT_SIDE'
    VERIFIED = 'VERIFIED'
    VERIFICATION_FAILED = 'VERIFICATION_FAILED'
    ENTITLED = 'ENTITLED'
    DELIVERED = 'DELIVERED'


TRANSITIONS = {
    PurchaseState.INITIATED: {PurchaseState.AWAITING_GATEWAY},
    PurchaseState.AWAITING_GATEWAY: {PurchaseState.PAID_CLIENT_SIDE, PurchaseState.CANCELLED},
    PurchaseState.PAID_CLIENT_SIDE: {PurchaseState.ENTITLED, PurchaseState.VERIFIED,
                                     PurchaseState.VERIFICATION_FAILED},
    PurchaseState.VERIFIED: {PurchaseState.ENTITLED},
    PurchaseState.ENTITLED: {PurchaseState.DELIVERED},
}


@dataclass
class PurchaseTransaction:
    project_id: str
    buyer_email: str
    reference: str
    amount_expected: int
    state: PurchaseState = PurchaseState.INITIATED
    created_at: float = field(default_factory=time.time)

    def advance(self, state):
        if state not in TRANSITIONS.get(self.state, ()):
            raise InvalidTransitionError(f'{self.reference or self.project_id}: {self.state.value} -> {state.value}')
        self.state = state

    def to_dict(self):
        data = asdict(self)
        data['state'] = self.state.value
        return data

    @classmethod
    def from_dict(cls, data):
        return cls(
            project_id=data['project_id'],
            buyer_email=data.get('buyer_email', ''),
            reference=data['reference'],
            amount_expected=int(data.get('amount_expected', 0)),
            state=PurchaseState(data['state']),
            created_at=float(data.get('created_at', 0)),
        )


@dataclass(frozen=True)
class PurchaseOutcome:
    state: PurchaseState
    project: Optional[Project]
    transaction: Optional[PurchaseTransaction] = None
    delivery: Optional[Delivery] = None
    checkout: Optional[dict] = None


class TransactionStore:
    """In-flight transactions keyed by reference, kept in session storage.

    A checkout left without closing the widget (back button, closed tab)
    never reports back, so attempts older than ``ttl`` seconds are no longer
    shown as pending and are dropped on the next save. A late callback can
    still find them until then. Each project keeps at most one attempt
    waiting on the gateway; starting again replaces it.
    """

    KEY = 'pending_purchases'
    MAX_PENDING = 10
    TTL = 30 * 60

    def __init__(self, storage, ttl=None, clock=time.time):
        self.storage = storage
        self.ttl = self.TTL if ttl is None else ttl
        self.clock = clock

    def _is_stale(self, raw):
        try:
            created_at = float(raw.get('created_at', 0))
        except (AttributeError, TypeError, ValueError):
            return True
        return self.clock() - created_at > self.ttl

    def _load(self):
        raw = self.storage.get(self.KEY)
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    def _dump(self, data):
        if data:
            self.storage.set(self.KEY, json.dumps(data))
        else:
            self.storage.delete(self.KEY)

    def get(self, reference):
        raw = self._load().get(reference)
        if raw is None:
            return None
        try:
            return PurchaseTransaction.from_dict(raw)
        except (KeyError, ValueError, TypeError):
            return None

    def save(self, transaction):
        data = {
            reference: raw for reference, raw in self._load().items()
            if reference != transaction.reference
            and not self._is_stale(raw)
            and not (raw.get('project_id') == transaction.project_id
                     and raw.get('state') == PurchaseState.AWAITING_GATEWAY.value)
        }
        data[transaction.reference] = transaction.to_dict()
        while len(data) > self.MAX_PENDING:
            data.pop(next(iter(data)))
        self._dump(data)

    def discard(self, reference):
        data = self._load()
        if data.pop(reference, None) is not None:
            self._dump(data)

    def pending(self):
        transactions = []
        for reference, raw in self._load().items():
            if self._is_stale(raw):
                continue
            transaction = self.get(reference)
            if transaction is not None:
                transactions.append(transaction)
        return transactions


class PurchaseOrchestrator:

    def __init__(self, catalog, entitlements, delivery, checkout, reconciler, transactions,
                 ledger=None, notify=None, logger=None, require_verification=False,
                 delivery_delay_ms=1000, return_delivery_delay_ms=500):
        self.catalog = catalog
        self.entitlements = entitlements
        self.delivery = delivery
        self.checkout = checkout
        self.reconciler = reconciler
        self.transactions = transactions
        self.ledger = ledger
        self.notify = notify or (lambda message, category='info': None)
        self.logger = logger or logging.getLogger(__name__)
        self.require_verification = require_verification
        self.delivery_delay_ms = delivery_delay_ms
        self.return_delivery_delay_ms = return_delivery_delay_ms

    def _project(self, project_id):
        project = self.catalog.get(project_id)
        if project is None:
            raise ProjectNotFoundError(f'Project {project_id} is not in the catalog')
        return project

    def _redeliver(self, project):
        return PurchaseOutcome(PurchaseState.DELIVERED, project, delivery=self.delivery.deliver(project))

    def request_purchase(self, project_id):
        """Start buying a project. Owned projects are delivered again instead."""
        project = self._project(project_id)
        if self.entitlements.has(project.id):
            self.logger.info(f"Project {project.id} already owned, redelivering")
            return self._redeliver(project)
        transaction = PurchaseTransaction(
            project_id=project.id,
            buyer_email='',
            reference='',
            amount_expected=project.price,
        )
        return PurchaseOutcome(PurchaseState.INITIATED, project, transaction=transaction)

    def submit_email(self, project_id, email):
        """Hand the purchase to the gateway once a usable email is supplied."""
        project = self._project(project_id)
        if self.entitlements.has(project.id):
            return self._redeliver(project)

        email = (email or '').strip()
        if '@' not in email:
            raise InvalidEmailError('Please enter a valid email address')

        transaction = PurchaseTransaction(
            project_id=project.id,
            buyer_email=email,
            reference=generate_reference(),
            amount_expected=project.price,
        )
        checkout = self.checkout.configure(transaction, project)
        transaction.advance(PurchaseState.AWAITING_GATEWAY)
        self.transactions.save(transaction)
        self.logger.info(f"Purchase {transaction.reference} for project {project.id} awaiting gateway")
        return PurchaseOutcome(transaction.state, project, transaction=transaction, checkout=checkout)

    def cancel(self, reference):
        """The buyer closed the checkout. Nothing is shown and nothing is owned."""
        transaction = self.transactions.get(reference)
        if transaction is None:
            return None
        transaction.advance(PurchaseState.CANCELLED)
        self.transactions.discard(reference)
        self.logger.info(f"Purchase {reference} cancelled")
        return transaction

    def pending_project_ids(self):
        return {t.project_id for t in self.transactions.pending()
                if t.state == PurchaseState.AWAITING_GATEWAY}

    def confirm_client_payment(self, reference):
        """In-page success callback from the gateway."""
        transaction = self.transactions.get(reference)
        if transaction is None:
            raise TransactionNotFoundError(f'No purchase in progress with reference {reference}')
        transaction.advance(PurchaseState.PAID_CLIENT_SIDE)
        project = self.catalog.get(transaction.project_id)
        if self.require_verification:
            return self._verify_and_entitle(transaction, project, self.delivery_delay_ms)
        return self._entitle(transaction, project, False, self.delivery_delay_ms)

    def handle_return(self, reference, project_id):
        """Return-URL path: only a server-confirmed reference is entitled."""
        project = self.catalog.get(project_id)
        transaction = self.transactions.get(reference)
        if transaction is None or transaction.project_id != project_id \
                or transaction.state != PurchaseState.AWAITING_GATEWAY:
            transaction = PurchaseTransaction(
                project_id=project_id,
                buyer_email='',
                reference=reference,
                amount_expected=project.price if project else 0,
                state=PurchaseState.AWAITING_GATEWAY,
            )
        transaction.advance(PurchaseState.PAID_CLIENT_SIDE)
        self.notify('Verifying payment...', 'info')
        return self._verify_and_entitle(transaction, project, self.return_delivery_delay_ms)

    def _verify_and_entitle(self, transaction, project, delay_ms):
        if not self.reconciler.verify(transaction.reference):
            transaction.advance(PurchaseState.VERIFICATION_FAILED)
            self.transactions.discard(transaction.reference)
            self.logger.warning(f"Purchase {transaction.reference} failed verification")
            self.notify('Payment verification failed. Please contact support.', 'danger')
            return PurchaseOutcome(transaction.state, project, transaction=transaction)
        transaction.advance(PurchaseState.VERIFIED)
        return self._entitle(transaction, project, True, delay_ms)

    def _entitle(self, transaction, project, verified, delay_ms):
        if project is None:
            # Only catalog ids are ever written to the entitlement store.
            self.transactions.discard(transaction.reference)
            self.logger.warning(f"Purchase {transaction.reference} names unlisted project "
                                f"{transaction.project_id!r}, nothing recorded")
            if self.ledger is not None:
                self.ledger(transaction, verified)
            self.notify('Payment received, but this project is no longer listed. '
                        'Please contact support with your reference.', 'warning')
            return PurchaseOutcome(transaction.state, None, transaction=transaction)

        transaction.advance(PurchaseState.ENTITLED)
        self.entitlements.record(transaction.project_id, project)
        self.transactions.discard(transaction.reference)
        self.logger.info(f"Project {transaction.project_id} entitled by {transaction.reference} (verified={verified})")
        if self.ledger is not None:
            self.ledger(transaction, verified)

        try:
            delivery = self.delivery.deliver(project, delay_ms=delay_ms)
        except DeliveryError as e:
            self.logger.error(f"Delivery of project {project.id} failed: {e}")
            self.notify('Your purchase is saved, but the download could not start. '
                        'Use "Download Again" to retry.', 'warning')
            return PurchaseOutcome(transaction.state, project, transaction=transaction)
        transaction.advance(PurchaseState.DELIVERED)
        return PurchaseOutcome(transaction.state, project, transaction=transaction, delivery=delivery)
