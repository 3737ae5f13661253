import os
from dotenv import load_dotenv

basedir = os.path.abspath(os.path.dirname(__file__))
load_dotenv(os.path.join(basedir, '.env'))


def _flag(name, default):
    return os.environ.get(name, default).lower() in ['true', 'on', '1']


class Config:
    """Holds the application configuration."""

    # Session signing and flash messages
    SECRET_KEY = os.environ.get('SECRET_KEY', 'super_secret_key_for_flash_messages')

    # Database for device-scoped storage and the payment ledger
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        'sqlite:///' + os.path.join(basedir, 'projectstore.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_FILE = os.environ.get('LOG_FILE', 'app.log')

    # Catalog source: an explicit URL wins over the Google Sheet
    CATALOG_URL = os.environ.get('CATALOG_URL')
    CATALOG_SHEET_ID = os.environ.get('CATALOG_SHEET_ID', '1mtOy-WiKy1Jd85amuJeh_JLWxWlAVvCr')
    CATALOG_SHEET_NAME = os.environ.get('CATALOG_SHEET_NAME', 'sweeft projects')
    CATALOG_TIMEOUT = float(os.environ.get('CATALOG_TIMEOUT', 10))
    CATALOG_RETRIES = int(os.environ.get('CATALOG_RETRIES', 2))
    CATALOG_LOAD_ON_STARTUP = _flag('CATALOG_LOAD_ON_STARTUP', 'true')
    # Seconds to wait after a failed load before a request tries again
    CATALOG_RETRY_BACKOFF = float(os.environ.get('CATALOG_RETRY_BACKOFF', 30))

    # Pricing
    FIXED_PRICE = int(os.environ.get('FIXED_PRICE', 2500))
    CURRENCY = 'NGN'

    # Paystack
    PAYSTACK_PUBLIC_KEY = os.environ.get('PAYSTACK_PUBLIC_KEY', '')
    PAYSTACK_SECRET_KEY = os.environ.get('PAYSTACK_SECRET_KEY', '')
    PAYSTACK_API_URL = os.environ.get('PAYSTACK_API_URL', 'https://api.paystack.co')

    # Optional remote config endpoint, falls back to PAYSTACK_PUBLIC_KEY above
    CONFIG_URL = os.environ.get('CONFIG_URL')
    CONFIG_TIMEOUT = float(os.environ.get('CONFIG_TIMEOUT', 5))

    # Verification endpoint; without it references are checked against Paystack directly
    VERIFY_URL = os.environ.get('VERIFY_URL')
    VERIFY_TIMEOUT = float(os.environ.get('VERIFY_TIMEOUT', 10))
    # When on, the in-page callback is verified the same way as the return URL
    REQUIRE_SERVER_VERIFICATION = _flag('REQUIRE_SERVER_VERIFICATION', 'false')

    # Device-scoped purchase storage
    STORAGE_KEY = 'cybersweeft_purchases_v1'
    LAST_PURCHASE_KEY = 'last_purchase'
    DEVICE_COOKIE_NAME = 'device_id'
    DEVICE_COOKIE_MAX_AGE = 60 * 60 * 24 * 365 * 2
    # Seconds an unfinished checkout is shown as in progress
    PENDING_TTL = int(os.environ.get('PENDING_TTL', 30 * 60))

    # Delivery
    DELIVERY_DELAY_MS = 1000
    RETURN_DELIVERY_DELAY_MS = 500
    DRIVE_DOWNLOAD_URL = 'https://drive.google.com/uc?export=download&id={asset_ref}'
    DRIVE_VIEW_URL = 'https://drive.google.com/file/d/{asset_ref}/view'

    @staticmethod
    def init_app(app):
        if not app.config['PAYSTACK_PUBLIC_KEY'] and not app.config['CONFIG_URL']:
            app.logger.warning('No Paystack public key configured, purchases will be unavailable')
