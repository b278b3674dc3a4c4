"""Thin adapter over the Stripe payment-intent API."""

import logging

import stripe

from wonderland.core import config

logger = logging.getLogger(__name__)

SUCCEEDED_STATUS = 'succeeded'


class PaymentProviderNotConfigured(RuntimeError):
    pass


def _api_key() -> str:
    if not config.PAYMENT_SECRET_KEY:
        raise PaymentProviderNotConfigured('PAYMENT_SECRET_KEY is not configured.')
    return config.PAYMENT_SECRET_KEY


def price_to_minor_units(price: float) -> int:
    return int(round(price * 100))


def create_payment_intent(amount: int, selection_id: int, currency: str | None = None) -> str:
    """Create a card payment intent and return its client secret.

    ``amount`` is in the currency's minor unit (cents for usd). The selection
    id travels in the intent metadata so the payment can only confirm that
    selection.
    """
    intent = stripe.PaymentIntent.create(
        amount=amount,
        currency=currency or config.PAYMENT_CURRENCY,
        payment_method_types=['card'],
        metadata={'selection_id': str(selection_id)},
        api_key=_api_key(),
    )
    logger.info('Created payment intent %s for selection %s (%s minor units)', intent.id, selection_id, amount)
    return intent.client_secret


def payment_confirmed(transaction_id: str, selection_id: int, amount: int) -> bool:
    intent = stripe.PaymentIntent.retrieve(transaction_id, api_key=_api_key())
    metadata = intent.metadata or {}

    if intent.status != SUCCEEDED_STATUS:
        return False
    if intent.amount != amount or metadata.get('selection_id') != str(selection_id):
        logger.warning('Payment intent %s does not match selection %s', transaction_id, selection_id)
        return False
    return True
