"""Checkout orchestration.

A checkout attempt moves through these states::

    idle -> authorization_requested -> awaiting_external_confirmation
         -> succeeded | processing | failed

The processor collects payment details between the second and third step,
so the shopper leaves the site and comes back. Everything needed to rebuild
the order across that round trip lives in the session's staged draft. The
order itself is written only during reconciliation, once per payment
authorization.
"""

import hmac
import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from prometheus_client import Counter
from sqlalchemy.orm import Session

from . import crud
from .auth import AuthenticatedUser
from .exceptions import (
    CheckoutValidationError,
    DraftMissing,
    DuplicatePayment,
    InvalidStateTransition,
    PaymentFailed,
    PaymentGatewayError,
    Unauthenticated,
)
from .schema import (
    AuthorizationHandle,
    CheckoutState,
    OrderDraft,
    PaymentAuthorization,
    ReconciliationOutcome,
    ReconciliationResult,
    ShippingAddress,
)
from .session_state import SessionState

PAYMENT_AUTHORIZATIONS_TOTAL = Counter(
    "storefront_payment_authorizations_total",
    "Payment authorization requests by outcome",
    ["outcome"],
)
RECONCILIATIONS_TOTAL = Counter(
    "storefront_reconciliations_total",
    "Checkout reconciliations by outcome",
    ["outcome"],
)

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    CheckoutState.IDLE: {CheckoutState.AUTHORIZATION_REQUESTED},
    CheckoutState.AUTHORIZATION_REQUESTED: {
        CheckoutState.AWAITING_EXTERNAL_CONFIRMATION,
        CheckoutState.FAILED,
    },
    CheckoutState.AWAITING_EXTERNAL_CONFIRMATION: {
        CheckoutState.SUCCEEDED,
        CheckoutState.PROCESSING,
        CheckoutState.FAILED,
    },
    CheckoutState.PROCESSING: {CheckoutState.SUCCEEDED, CheckoutState.FAILED},
    CheckoutState.SUCCEEDED: set(),
    CheckoutState.FAILED: set(),
}

SUCCESS_MESSAGE = "Payment successful! Thank you for your order. Your items will be shipped soon."
PENDING_MESSAGE = "We are processing your payment. We will notify you when it's complete."
FAILED_MESSAGE = "Unfortunately, we were unable to process your payment. Please try again or contact support."
DRAFT_MISSING_MESSAGE = (
    "Your payment went through but the order details could not be found. "
    "Please contact support before starting a new checkout."
)
MISMATCH_MESSAGE = "This payment does not match your order. Please start the checkout again."


class CheckoutAttempt:
    def __init__(self, state: CheckoutState = CheckoutState.IDLE) -> None:
        self.state = state

    def advance(self, new_state: CheckoutState) -> None:
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            msg = f"Illegal checkout transition {self.state.value} -> {new_state.value}"
            raise InvalidStateTransition(msg)
        self.state = new_state


def to_minor_units(amount: Decimal | float | int | str) -> int:
    """Convert a major-unit amount to minor units, rounding half away from zero."""
    value = Decimal(str(amount)) * 100
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class CheckoutOrchestrator:
    def __init__(self, db: Session, gateway, currency: str) -> None:
        self.db = db
        self.gateway = gateway
        self.currency = currency

    def begin_authorization(
        self,
        amount: Decimal | float | int | str,
        identity: AuthenticatedUser | None,
    ) -> AuthorizationHandle:
        if identity is None:
            raise Unauthenticated("Please log in before paying.")
        if Decimal(str(amount)) <= 0:
            raise CheckoutValidationError("Payment amount must be positive.")
        amount_minor = to_minor_units(amount)
        if amount_minor < 1:
            raise CheckoutValidationError("Payment amount is below the smallest chargeable unit.")

        attempt = CheckoutAttempt()
        attempt.advance(CheckoutState.AUTHORIZATION_REQUESTED)
        try:
            authorization = self.gateway.create_authorization(amount_minor, self.currency, identity.id)
        except PaymentGatewayError:
            attempt.advance(CheckoutState.FAILED)
            PAYMENT_AUTHORIZATIONS_TOTAL.labels(outcome="error").inc()
            logger.exception("Could not create payment authorization for user %s", identity.id)
            raise

        if not authorization.client_handle:
            PAYMENT_AUTHORIZATIONS_TOTAL.labels(outcome="error").inc()
            raise PaymentGatewayError("Payment processor did not return a client handle.")

        attempt.advance(CheckoutState.AWAITING_EXTERNAL_CONFIRMATION)
        PAYMENT_AUTHORIZATIONS_TOTAL.labels(outcome="created").inc()
        logger.info(
            "User %s: authorization %s requested for %d %s",
            identity.id,
            authorization.id,
            amount_minor,
            self.currency,
        )
        return AuthorizationHandle(
            client_handle=authorization.client_handle,
            authorization_id=authorization.id,
            amount_minor=authorization.amount,
            currency=authorization.currency,
            state=attempt.state,
        )

    def stage_order_draft(self, session: SessionState, shipping_address: ShippingAddress) -> OrderDraft:
        missing = shipping_address.missing_fields()
        if missing:
            raise CheckoutValidationError(
                "Please fill out all shipping details first.",
                missing_fields=missing,
            )

        cart = session.get_cart()
        if not cart.lines:
            raise CheckoutValidationError("Your shopping bag is empty.")

        draft = OrderDraft(
            lines=cart.lines,
            total_amount=cart.total_amount,
            currency=self.currency,
            shipping_address=shipping_address,
            staged_at=datetime.now(timezone.utc),
        )
        session.stage_draft(draft)
        return draft

    def reconcile(
        self,
        client_handle: str,
        identity: AuthenticatedUser | None,
        session: SessionState,
    ) -> ReconciliationResult:
        """Turn the processor's verdict on a payment into at most one order.

        Safe to call repeatedly for the same payment: a second successful
        reconciliation finds the order recorded by the first and reports it.
        A payment that belongs to someone else, or whose amount differs from
        the staged draft, is reported as failed and leaves the session alone.
        """
        if identity is None:
            raise Unauthenticated("Please log in to complete your order.")

        attempt = CheckoutAttempt(CheckoutState.AWAITING_EXTERNAL_CONFIRMATION)
        authorization_id = None
        try:
            authorization = self._retrieve(client_handle)
            authorization_id = authorization.id

            if not self._belongs_to(authorization, client_handle, identity):
                raise PaymentFailed(MISMATCH_MESSAGE)

            if authorization.status == "processing":
                attempt.advance(CheckoutState.PROCESSING)
                return self._result(ReconciliationOutcome.PENDING_CONFIRMATION, attempt, authorization_id, PENDING_MESSAGE)

            if authorization.status != "succeeded":
                raise PaymentFailed(authorization.failure_message or FAILED_MESSAGE)

            order_id = self._record_order(authorization, identity, session)

        except PaymentFailed as e:
            attempt.advance(CheckoutState.FAILED)
            logger.warning("User %s: payment %s failed: %s", identity.id, authorization_id, e)
            return self._result(ReconciliationOutcome.PAYMENT_FAILED, attempt, authorization_id, str(e))

        except DraftMissing as e:
            attempt.advance(CheckoutState.FAILED)
            logger.error("User %s: payment %s succeeded but %s", identity.id, authorization_id, e)
            return self._result(ReconciliationOutcome.DRAFT_MISSING, attempt, authorization_id, DRAFT_MISSING_MESSAGE)

        attempt.advance(CheckoutState.SUCCEEDED)
        return self._result(ReconciliationOutcome.SUCCEEDED, attempt, authorization_id, SUCCESS_MESSAGE, order_id)

    def _retrieve(self, client_handle: str) -> PaymentAuthorization:
        try:
            return self.gateway.retrieve_status(client_handle)
        except PaymentGatewayError as e:
            raise PaymentFailed(f"Could not verify the payment: {e}") from e

    @staticmethod
    def _belongs_to(authorization: PaymentAuthorization, client_handle: str, identity: AuthenticatedUser) -> bool:
        if not authorization.client_handle or authorization.owner_id != identity.id:
            return False
        return hmac.compare_digest(authorization.client_handle.encode(), client_handle.encode())

    def _record_order(
        self,
        authorization: PaymentAuthorization,
        identity: AuthenticatedUser,
        session: SessionState,
    ) -> int | None:
        draft = session.load_draft()
        if draft is None:
            # A repeated return after success finds the draft already consumed.
            existing = crud.get_order_by_payment_authorization(self.db, authorization.id)
            if existing is None:
                raise DraftMissing("no staged order draft was found")
            self._check_owner(existing, identity)
            logger.info("Payment %s was already reconciled as order %s", authorization.id, existing.id)
            session.clear_cart()
            return existing.id

        if (
            authorization.amount != to_minor_units(draft.total_amount)
            or authorization.currency.lower() != draft.currency.lower()
        ):
            logger.warning(
                "Payment %s for %d %s does not match staged draft total %s %s",
                authorization.id,
                authorization.amount,
                authorization.currency,
                draft.total_amount,
                draft.currency,
            )
            raise PaymentFailed(MISMATCH_MESSAGE)

        try:
            order = crud.create_order(
                self.db,
                owner_id=identity.id,
                lines=draft.lines,
                total_amount=draft.total_amount,
                currency=draft.currency,
                shipping_address=draft.shipping_address,
                payment_authorization_id=authorization.id,
            )
            order_id = order.id
        except DuplicatePayment:
            existing = crud.get_order_by_payment_authorization(self.db, authorization.id)
            if existing is not None:
                self._check_owner(existing, identity)
            order_id = existing.id if existing else None
            logger.info("Payment %s was already reconciled as order %s", authorization.id, order_id)

        session.clear_draft()
        session.clear_cart()
        return order_id

    @staticmethod
    def _check_owner(order, identity: AuthenticatedUser) -> None:
        if order.owner_id != identity.id:
            logger.warning(
                "User %s tried to reconcile payment %s already recorded for another user",
                identity.id,
                order.payment_authorization_id,
            )
            raise PaymentFailed(MISMATCH_MESSAGE)

    @staticmethod
    def _result(
        outcome: ReconciliationOutcome,
        attempt: CheckoutAttempt,
        authorization_id: str | None,
        message: str,
        order_id: int | None = None,
    ) -> ReconciliationResult:
        RECONCILIATIONS_TOTAL.labels(outcome=outcome.value).inc()
        return ReconciliationResult(
            outcome=outcome,
            state=attempt.state,
            authorization_id=authorization_id,
            order_id=order_id,
            message=message,
        )
