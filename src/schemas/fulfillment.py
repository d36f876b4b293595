"""Fulfillment and provider callback Pydantic schemas."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from src.models.fulfillment import FulfillmentErrorKind, FulfillmentOutcome, SweepResult


class FulfillmentResponse(BaseModel):
    """Result of a fulfillment, retry, or status check on one order."""

    model_config = ConfigDict(from_attributes=True)

    order_id: str = Field(description="Order UUID")
    status: str | None = Field(description="Order status after the operation")
    message: str | None = Field(default=None, description="Status message written to the order")
    error_kind: FulfillmentErrorKind | None = Field(default=None, description="Error category, if any")
    provider_message: str | None = Field(default=None, description="Raw provider error or status text")
    external_order_ref: str | None = Field(default=None, description="Provider order reference")
    dispatched: bool = Field(default=False, description="Whether the provider was called")
    changed: bool = Field(default=False, description="Whether the order status changed")

    @classmethod
    def from_outcome(cls, outcome: FulfillmentOutcome) -> "FulfillmentResponse":
        return cls(
            order_id=outcome.order_id,
            status=outcome.status,
            message=outcome.message,
            error_kind=outcome.error_kind,
            provider_message=outcome.provider_message,
            external_order_ref=outcome.external_order_ref,
            dispatched=outcome.dispatched,
            changed=outcome.changed,
        )


class SweepResponse(BaseModel):
    """Counts from a reconciliation sweep."""

    model_config = ConfigDict(from_attributes=True)

    checked: int = Field(default=0, description="Orders polled")
    updated: int = Field(default=0, description="Orders whose status changed")
    completed: int = Field(default=0, description="Orders moved to completed")
    failed: int = Field(default=0, description="Orders moved to failed")
    errors: int = Field(default=0, description="Orders that could not be checked")
    skipped_reason: str | None = Field(default=None, description="Why the sweep did not run")

    @classmethod
    def from_result(cls, result: SweepResult) -> "SweepResponse":
        return cls(
            checked=result.checked,
            updated=result.updated,
            completed=result.completed,
            failed=result.failed,
            errors=result.errors,
            skipped_reason=result.skipped_reason,
        )


class ProviderCallbackPayload(BaseModel):
    """Order status callback sent by the provider."""

    model_config = ConfigDict(extra="allow")

    order_id: int | str | None = Field(default=None, description="Provider order id")
    status: str | None = Field(default=None, description="Provider order status")
    message: str | None = Field(default=None, description="Provider status message")
    remark: str | None = Field(default=None, description="Remark sent with the order (order_id:<uuid>)")
    game_code: str | None = Field(default=None, description="Provider game code")
    delivery_items: list[Any] | None = Field(default=None, description="Delivered codes, if any")
