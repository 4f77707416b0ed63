"""FastAPI dependencies for the external clients (overridden in tests)"""

from .services.contact_sync import ContactSyncClient
from .services.hapio_client import HapioClient
from .services.payment_gateway import StripeGateway


def get_hapio_client() -> HapioClient:
    return HapioClient()


def get_payment_gateway() -> StripeGateway:
    return StripeGateway()


def get_contact_sync() -> ContactSyncClient:
    return ContactSyncClient()
