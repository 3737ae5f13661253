class StoreError(Exception):
    """Base class for errors raised by the project store."""


class CatalogLoadError(StoreError):
    """The catalog source could not be reached or did not return a catalog."""


class ValidationError(StoreError):
    pass


class InvalidEmailError(ValidationError):
    pass


class ProjectNotFoundError(StoreError):
    pass


class GatewayUnavailableError(StoreError):
    """Payment cannot be initiated, usually because no public key is available."""


class TransactionNotFoundError(StoreError):
    pass


class InvalidTransitionError(StoreError):
    pass


class DeliveryError(StoreError):
    pass
