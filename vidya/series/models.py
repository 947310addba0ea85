from typing import List, Optional

from pydantic import BaseModel, root_validator, validator

from vidya.exams.models import reject_nulls

# Fields an update may clear by sending null
NULLABLE_SERIES_FIELDS = {"long_description", "image_url"}


class SeriesRules(BaseModel):
    """Field rules shared by series create and update payloads"""

    @validator("title", "description", "category", check_fields=False)
    def validate_required(cls, v):
        if v is None:
            return v
        if not v.strip():
            raise ValueError("Field is required")
        return v.strip()

    @validator("discount", check_fields=False)
    def validate_discount(cls, v):
        if v is not None and not 0 <= v <= 100:
            raise ValueError("Discount must be between 0 and 100")
        return v

    @validator("price", check_fields=False)
    def validate_price(cls, v):
        if v is not None and v < 0:
            raise ValueError("Price cannot be negative")
        return v


class SeriesCreate(SeriesRules):
    title: str
    description: str
    long_description: Optional[str] = None
    category: str
    image_url: Optional[str] = None
    is_paid: bool = False
    price: float = 0
    discount: float = 0
    duration: str = "Unlimited"
    features: List[str] = []
    tests: List[str] = []
    popular: bool = False
    active: bool = True


class SeriesUpdate(SeriesRules):
    title: Optional[str] = None
    description: Optional[str] = None
    long_description: Optional[str] = None
    category: Optional[str] = None
    image_url: Optional[str] = None
    is_paid: Optional[bool] = None
    price: Optional[float] = None
    discount: Optional[float] = None
    duration: Optional[str] = None
    features: Optional[List[str]] = None
    tests: Optional[List[str]] = None
    popular: Optional[bool] = None
    active: Optional[bool] = None
    rating: Optional[float] = None

    @root_validator(pre=True)
    def validate_nulls(cls, values):
        return reject_nulls(values, NULLABLE_SERIES_FIELDS)
