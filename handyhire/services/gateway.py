"""Payment gateway boundary.

The escrow engine only talks to a ``PaymentGateway``; ``StripeGateway`` is the
production adapter. Charges are created with manual capture so the buyer's
approval and the actual capture arrive as separate webhook events.
"""

import json
import logging

import stripe
from pydantic import ValidationError as SchemaValidationError

from handyhire.schemas import GatewayEvent, StripeEventPayload, WebhookEventKind
from handyhire.services.errors import GatewayError, ValidationError

logger = logging.getLogger(__name__)


class PaymentGateway:
    """Contract the escrow engine needs from a payment processor."""

    name = 'abstract'

    def verify_webhook_signature(self, headers, raw_body) -> bool:
        raise NotImplementedError

    def parse_event(self, raw_body) -> GatewayEvent:
        raise NotImplementedError

    def create_charge(self, amount_cents, currency, metadata=None) -> dict:
        """Start a charge. Returns ``{'payment_id', 'client_secret'}``."""
        raise NotImplementedError

    def capture(self, payment_id):
        raise NotImplementedError

    def cancel_charge(self, payment_id):
        """Void a charge that was never captured."""
        raise NotImplementedError

    def payout(self, amount_cents, currency, payout_email, reference, destination_account=None) -> str:
        """Send funds to a user. Returns the gateway's payout reference."""
        raise NotImplementedError


class StripeGateway(PaymentGateway):
    """Stripe PaymentIntents with manual capture, Connect transfers for payouts."""

    name = 'stripe'

    # Stripe event type -> escrow event kind
    EVENT_KINDS = {
        'payment_intent.amount_capturable_updated': WebhookEventKind.ORDER_APPROVED,
        'payment_intent.succeeded': WebhookEventKind.CAPTURE_COMPLETED,
        'payment_intent.payment_failed': WebhookEventKind.CAPTURE_DENIED,
        'payment_intent.canceled': WebhookEventKind.CAPTURE_DENIED,
    }

    def __init__(self, secret_key=None, webhook_secret=None, timeout=10, tolerance=300):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.timeout = timeout
        self.tolerance = tolerance

    @classmethod
    def from_config(cls, config):
        gateway = cls(
            secret_key=config.get('STRIPE_SECRET_KEY'),
            webhook_secret=config.get('STRIPE_WEBHOOK_SECRET'),
            timeout=config.get('STRIPE_TIMEOUT_SECONDS', 10),
        )
        # Bound every outbound Stripe call
        stripe.default_http_client = stripe.RequestsClient(timeout=gateway.timeout)
        if not gateway.secret_key:
            logger.warning('STRIPE_SECRET_KEY not configured. Charges and payouts will fail.')
        return gateway

    def verify_webhook_signature(self, headers, raw_body) -> bool:
        sig_header = headers.get('Stripe-Signature')
        if not sig_header or not self.webhook_secret:
            return False

        payload = raw_body.decode('utf-8') if isinstance(raw_body, bytes) else raw_body
        try:
            return stripe.WebhookSignature.verify_header(
                payload, sig_header, self.webhook_secret, self.tolerance
            )
        except stripe.SignatureVerificationError as e:
            logger.warning(f'Stripe webhook signature rejected: {e}')
            return False

    def parse_event(self, raw_body) -> GatewayEvent:
        try:
            payload = StripeEventPayload.model_validate(json.loads(raw_body))
        except (ValueError, SchemaValidationError) as e:
            raise ValidationError('Invalid webhook payload', details=str(e))

        intent = payload.data.object
        failure_reason = None
        if intent.last_payment_error:
            failure_reason = intent.last_payment_error.get('message')

        return GatewayEvent(
            event_id=payload.id,
            kind=self.EVENT_KINDS.get(payload.type, WebhookEventKind.UNKNOWN),
            raw_type=payload.type,
            payment_id=intent.id,
            failure_reason=failure_reason,
        )

    def create_charge(self, amount_cents, currency, metadata=None) -> dict:
        try:
            payment_intent = stripe.PaymentIntent.create(
                amount=amount_cents,
                currency=currency.lower(),
                capture_method='manual',  # Hold until the capture webhook round-trip
                metadata=metadata or {},
                api_key=self.secret_key,
            )
        except stripe.StripeError as e:
            logger.error(f'Stripe PaymentIntent creation failed: {e}')
            raise GatewayError('Payment provider rejected the charge')

        return {
            'payment_id': payment_intent.id,
            'client_secret': payment_intent.client_secret,
        }

    def capture(self, payment_id):
        try:
            stripe.PaymentIntent.capture(payment_id, api_key=self.secret_key)
        except stripe.StripeError as e:
            logger.error(f'Stripe capture failed for {payment_id}: {e}')
            raise GatewayError('Payment capture failed')

    def cancel_charge(self, payment_id):
        try:
            stripe.PaymentIntent.cancel(payment_id, api_key=self.secret_key)
        except stripe.StripeError as e:
            logger.error(f'Stripe cancel failed for {payment_id}: {e}')
            raise GatewayError('Payment cancellation failed')

    def payout(self, amount_cents, currency, payout_email, reference, destination_account=None) -> str:
        if not destination_account:
            raise GatewayError('No connected payout account on file')

        try:
            transfer = stripe.Transfer.create(
                amount=amount_cents,
                currency=currency.lower(),
                destination=destination_account,
                transfer_group=reference,
                metadata={'payout_email': payout_email, 'reference': reference},
                api_key=self.secret_key,
            )
        except stripe.StripeError as e:
            logger.error(f'Stripe transfer failed for {reference}: {e}')
            raise GatewayError('Payout failed')

        return transfer.id
