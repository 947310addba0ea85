from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, root_validator


class PaymentMethod(str, Enum):
    CARD = "card"
    UPI = "upi"
    NETBANKING = "netbanking"
    WALLET = "wallet"
    FREE = "free"


class PurchaseStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class AccessReason(str, Enum):
    ADMIN_OR_CREATOR = "admin_or_creator"
    FREE_TEST = "free_test"
    PURCHASED_SERIES = "purchased_series"
    PURCHASED_TEST = "purchased_test"
    NOT_PURCHASED = "not_purchased"
    NOT_PUBLISHED = "not_published"


class PurchaseCreate(BaseModel):
    series_id: Optional[str] = None
    test_id: Optional[str] = None
    payment_method: PaymentMethod = PaymentMethod.CARD
    payment_id: Optional[str] = None

    class Config:
        use_enum_values = True

    @root_validator(skip_on_failure=True)
    def validate_target(cls, values):
        if bool(values.get("series_id")) == bool(values.get("test_id")):
            raise ValueError("Provide exactly one of series_id or test_id")
        return values


class PurchaseComplete(BaseModel):
    payment_id: Optional[str] = None
    transaction_details: Dict[str, Any] = {}
