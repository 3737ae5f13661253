"""Application-wide store state.

One ``StoreContext`` is created by ``create_app`` and kept in
``app.extensions['projectstore']``. It owns the loaded catalog and the
long-lived collaborators; per-device pieces (entitlements, orchestrator) are
built on demand for each request.
"""
import time

from flask import current_app, flash
from sqlalchemy.exc import SQLAlchemyError

from app import db
from .catalog import CatalogIndex
from .delivery import DeliveryExecutor
from .entitlements import EntitlementStore
from .exceptions import CatalogLoadError
from .gateway import PaystackCheckout, PublicKeyResolver
from .models import PaymentRecord
from .normalizer import load_catalog
from .purchase import PurchaseOrchestrator, TransactionStore
from .source import CatalogSource, build_sheet_url
from .storage import DeviceStorage, SessionStorage
from .verification import PaystackVerifier, RemoteVerifier, VerificationReconciler

CATALOG_ERROR_MESSAGE = 'Failed to load projects. Please refresh the page.'


def catalog_url(config):
    return config.get('CATALOG_URL') or build_sheet_url(config['CATALOG_SHEET_ID'], config['CATALOG_SHEET_NAME'])


class StoreContext:

    def __init__(self, app):
        config = app.config
        self.config = config
        self.logger = app.logger

        self.catalog = CatalogIndex()
        self.catalog_error = None
        self.skipped_rows = 0
        self.loaded = False
        self.failed_at = None

        self.source = CatalogSource(
            catalog_url(config),
            timeout=config['CATALOG_TIMEOUT'],
            retries=config['CATALOG_RETRIES'],
            logger=app.logger,
        )
        self.checkout = PaystackCheckout(
            PublicKeyResolver(
                config_url=config.get('CONFIG_URL'),
                fallback_key=config.get('PAYSTACK_PUBLIC_KEY', ''),
                timeout=config['CONFIG_TIMEOUT'],
                logger=app.logger,
            ),
            currency=config['CURRENCY'],
        )
        self.paystack_verifier = PaystackVerifier(
            config.get('PAYSTACK_SECRET_KEY', ''),
            api_url=config['PAYSTACK_API_URL'],
            timeout=config['VERIFY_TIMEOUT'],
        )
        if config.get('VERIFY_URL'):
            verifier = RemoteVerifier(config['VERIFY_URL'], timeout=config['VERIFY_TIMEOUT'])
        else:
            verifier = self.paystack_verifier
        self.reconciler = VerificationReconciler(verifier, logger=app.logger)

    def refresh_catalog(self, payload=None):
        """Fetch (unless ``payload`` is given) and normalize the catalog.

        A failure leaves an empty catalog and an error message behind; no
        partial catalog is ever installed.
        """
        try:
            if payload is None:
                payload = self.source.fetch()
            result = load_catalog(payload, self.config['FIXED_PRICE'])
        except CatalogLoadError as e:
            self.logger.error(f"Catalog load failed: {e}")
            self.catalog = CatalogIndex()
            self.catalog_error = CATALOG_ERROR_MESSAGE
            self.loaded = False
            self.failed_at = time.monotonic()
            raise

        self.catalog = CatalogIndex(result.projects, result.schools)
        self.catalog_error = None
        self.skipped_rows = result.skipped
        self.loaded = True
        self.failed_at = None
        self.logger.info(f"Loaded {len(result.projects)} projects ({result.skipped} rows skipped)")
        return result

    def retry_due(self):
        if self.failed_at is None:
            return True
        return time.monotonic() - self.failed_at >= self.config['CATALOG_RETRY_BACKOFF']

    def ensure_catalog(self):
        """Load the catalog if it is missing, at most once per back-off window."""
        if not self.loaded and self.retry_due():
            try:
                self.refresh_catalog()
            except CatalogLoadError:
                pass
        return self.catalog

    def delivery_executor(self, notify=None):
        return DeliveryExecutor(
            self.config['DRIVE_DOWNLOAD_URL'],
            view_url=self.config['DRIVE_VIEW_URL'],
            notify=notify,
            logger=self.logger,
        )

    def entitlements_for(self, device_id, session=None):
        return EntitlementStore(
            DeviceStorage(device_id),
            SessionStorage(session),
            self.config['STORAGE_KEY'],
            self.config['LAST_PURCHASE_KEY'],
        )

    def ledger_for(self, device_id):
        def record_payment(transaction, verified):
            try:
                db.session.add(PaymentRecord(
                    reference=transaction.reference,
                    project_id=transaction.project_id[:64],
                    customer_email=transaction.buyer_email or None,
                    amount=transaction.amount_expected,
                    verified=verified,
                    device_id=device_id,
                ))
                db.session.commit()
            except SQLAlchemyError as e:
                db.session.rollback()
                self.logger.error(f"Could not write payment record {transaction.reference}: {e}", exc_info=True)
        return record_payment

    def orchestrator_for(self, device_id, session=None, notify=flash):
        return PurchaseOrchestrator(
            catalog=self.ensure_catalog(),
            entitlements=self.entitlements_for(device_id, session),
            delivery=self.delivery_executor(notify),
            checkout=self.checkout,
            reconciler=self.reconciler,
            transactions=TransactionStore(SessionStorage(session), ttl=self.config['PENDING_TTL']),
            ledger=self.ledger_for(device_id),
            notify=notify,
            logger=self.logger,
            require_verification=self.config['REQUIRE_SERVER_VERIFICATION'],
            delivery_delay_ms=self.config['DELIVERY_DELAY_MS'],
            return_delivery_delay_ms=self.config['RETURN_DELIVERY_DELAY_MS'],
        )


def get_store():
    return current_app.extensions['projectstore']


def init_app(app):
    store = StoreContext(app)
    app.extensions['projectstore'] = store
    if app.config['CATALOG_LOAD_ON_STARTUP']:
        try:
            store.refresh_catalog()
        except CatalogLoadError:
            app.logger.warning('Starting with an empty catalog, will retry on the next request')
    return store
