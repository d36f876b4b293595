"""Internal fulfillment API routes."""

from uuid import UUID

from fastapi import APIRouter, Query

from src.api.deps import InternalKey
from src.api.middleware.error_handler import NotFoundError
from src.models.fulfillment import FulfillmentErrorKind, FulfillmentOutcome
from src.schemas.fulfillment import FulfillmentResponse, SweepResponse
from src.services.fulfillment_service import FulfillmentService
from src.services.reconciliation_service import ReconciliationService

router = APIRouter(prefix="/fulfillment", tags=["fulfillment"])


def _to_response(outcome: FulfillmentOutcome) -> FulfillmentResponse:
    if outcome.error_kind == FulfillmentErrorKind.NOT_FOUND:
        raise NotFoundError(
            "Order not found",
            details=[{"loc": ["order_id"], "msg": outcome.order_id, "type": outcome.error_kind.value}],
        )
    return FulfillmentResponse.from_outcome(outcome)


@router.post(
    "/orders/{order_id}/fulfill",
    response_model=FulfillmentResponse,
    summary="Fulfill an order",
    description="Dispatch a paid order to the provider. Repeated calls never cause a second provider call.",
)
async def fulfill_order(
    order_id: UUID,
    _: InternalKey,
    force: bool = Query(
        default=False,
        description="Re-run a failed or pending_manual order, or take over a stale processing order",
    ),
) -> FulfillmentResponse:
    """Fulfill a paid order, or retry a settled one with force.

    Args:
        order_id: The order's UUID.
        force: Operator retry of a failed, pending_manual or stale processing order.

    Returns:
        FulfillmentResponse: Status after the attempt, with error category and provider text.

    Raises:
        NotFoundError: 404 if the order does not exist.
    """
    service = FulfillmentService()
    outcome = await service.fulfill(order_id, force=force)
    return _to_response(outcome)


@router.post(
    "/orders/{order_id}/payment-confirmed",
    response_model=FulfillmentResponse,
    summary="Payment confirmed",
    description="Mark a pending order as paid and start fulfillment.",
)
async def payment_confirmed(order_id: UUID, _: InternalKey) -> FulfillmentResponse:
    service = FulfillmentService()
    outcome = await service.handle_payment_confirmed(order_id)
    return _to_response(outcome)


@router.get(
    "/orders/{order_id}/status",
    response_model=FulfillmentResponse,
    summary="Check order status with the provider",
    description="Poll the provider for an in-flight order and apply the result.",
)
async def check_order_status(order_id: UUID, _: InternalKey) -> FulfillmentResponse:
    service = ReconciliationService()
    outcome = await service.check_status(order_id)
    return _to_response(outcome)


@router.post(
    "/reconcile/sweep",
    response_model=SweepResponse,
    summary="Run a reconciliation sweep",
    description="Poll stale processing orders. Intended for a scheduler.",
)
async def reconcile_sweep(_: InternalKey) -> SweepResponse:
    """Run one sweep over stale processing orders.

    Returns:
        SweepResponse: Counts of checked, updated, completed, and failed orders.
    """
    service = ReconciliationService()
    result = await service.sweep()
    return SweepResponse.from_result(result)
