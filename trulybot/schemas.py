from typing import Annotated, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field, TypeAdapter

PAYMENT_EVENTS = ("payment.authorized", "payment.captured", "payment.failed")
SUBSCRIPTION_EVENTS = ("subscription.activated", "subscription.paused", "subscription.cancelled")


def _notes_as_dict(v):
    # The gateway sends an empty JSON array when an entity has no notes.
    if v is None or isinstance(v, list):
        return {}
    return v


Notes = Annotated[dict, BeforeValidator(_notes_as_dict)]


class _Entity(BaseModel):
    model_config = ConfigDict(extra="ignore")


class PaymentEntity(_Entity):
    id: str = Field(min_length=1)
    amount: int
    currency: str = "INR"
    status: str
    order_id: Optional[str] = None
    email: Optional[str] = None
    notes: Notes = Field(default_factory=dict)
    created_at: Optional[int] = None
    error_code: Optional[str] = None
    error_description: Optional[str] = None


class SubscriptionEntity(_Entity):
    id: str = Field(min_length=1)
    plan_id: Optional[str] = None
    status: Optional[str] = None
    current_start: Optional[int] = None
    current_end: Optional[int] = None
    notes: Notes = Field(default_factory=dict)


class PaymentWrapper(BaseModel):
    entity: PaymentEntity


class SubscriptionWrapper(BaseModel):
    entity: SubscriptionEntity


class PaymentPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")
    payment: PaymentWrapper


class SubscriptionPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")
    subscription: SubscriptionWrapper
    payment: Optional[PaymentWrapper] = None


class PaymentWebhook(BaseModel):
    model_config = ConfigDict(extra="ignore")
    event: Literal["payment.authorized", "payment.captured", "payment.failed"]
    payload: PaymentPayload
    created_at: Optional[int] = None

    @property
    def payment(self) -> PaymentEntity:
        return self.payload.payment.entity


class SubscriptionWebhook(BaseModel):
    model_config = ConfigDict(extra="ignore")
    event: Literal["subscription.activated", "subscription.paused", "subscription.cancelled"]
    payload: SubscriptionPayload
    created_at: Optional[int] = None

    @property
    def subscription(self) -> SubscriptionEntity:
        return self.payload.subscription.entity


WebhookEventSchema = Annotated[Union[PaymentWebhook, SubscriptionWebhook], Field(discriminator="event")]
webhook_adapter = TypeAdapter(WebhookEventSchema)


class CreateOrderRequest(BaseModel):
    plan_id: str
    currency: Literal["INR", "USD"] = "INR"
    billing_period: Literal["monthly", "yearly"] = "monthly"
    user_id: Optional[str] = None
    receipt: Optional[str] = Field(default=None, max_length=40)
    notes: Optional[dict] = None


class VerifyPaymentRequest(BaseModel):
    razorpay_order_id: str = Field(min_length=1, validation_alias=AliasChoices("razorpay_order_id", "order_id"))
    razorpay_payment_id: str = Field(min_length=1, validation_alias=AliasChoices("razorpay_payment_id", "payment_id"))
    razorpay_signature: str = Field(min_length=1, validation_alias=AliasChoices("razorpay_signature", "signature"))
    user_id: Optional[str] = None


class SessionRequest(BaseModel):
    access_token: Optional[str] = None


def validation_fields(errors: List[dict]) -> List[str]:
    return [".".join(str(p) for p in err.get("loc", ())) for err in errors]
