from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, root_validator, validator

# ==================== ENUMS ====================

class QuestionType(str, Enum):
    MCQ = "mcq"
    TRUE_FALSE = "trueFalse"
    SHORT_ANSWER = "shortAnswer"
    INTEGER = "integer"


class TestStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class AttemptStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


# ==================== QUESTION MODELS ====================

class OptionIn(BaseModel):
    option_id: Optional[str] = None
    text: str
    is_correct: bool = False


class QuestionIn(BaseModel):
    question_id: Optional[str] = None
    text: str
    type: QuestionType = QuestionType.MCQ
    options: List[OptionIn] = []
    correct_answer: Optional[Any] = None  # string, or list of strings for multi-select
    explanation: Optional[str] = None
    marks: int = 1
    section_title: Optional[str] = None

    class Config:
        use_enum_values = True

    @validator("marks")
    def validate_marks(cls, v):
        if v < 1:
            raise ValueError("Marks must be at least 1")
        return v


class SectionIn(BaseModel):
    section_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    order: int = 0


class TestSettings(BaseModel):
    shuffle_questions: bool = False
    show_results: bool = True
    time_limit: Optional[int] = None
    allow_review: bool = True


# ==================== TEST MODELS ====================

# Fields an update may clear by sending null
NULLABLE_TEST_FIELDS = {"access_duration", "series_id"}


def reject_nulls(values: dict, nullable: set) -> dict:
    if isinstance(values, dict):
        nulls = sorted(k for k, v in values.items() if v is None and k not in nullable)
        if nulls:
            raise ValueError(f"Fields cannot be null: {', '.join(nulls)}")
    return values


class TestRules(BaseModel):
    """Field rules shared by test create and update payloads"""

    @validator("duration", check_fields=False)
    def validate_duration(cls, v):
        if v is not None and v < 1:
            raise ValueError("Duration must be at least 1 minute")
        return v

    @validator("passing_score", check_fields=False)
    def validate_passing_score(cls, v):
        if v is not None and not 0 <= v <= 100:
            raise ValueError("Passing score must be between 0 and 100")
        return v

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


class TestCreate(TestRules):
    title: str
    description: str
    grade: str
    subject: str
    duration: int  # minutes
    passing_score: int = 60
    sections: List[SectionIn] = []
    questions: List[QuestionIn] = []
    tags: List[str] = []
    settings: TestSettings = TestSettings()
    status: TestStatus = TestStatus.DRAFT
    is_paid: bool = False
    price: float = 0
    discount: float = 0
    access_duration: Optional[int] = None  # days
    is_series_test: bool = False
    series_id: Optional[str] = None

    class Config:
        use_enum_values = True


class TestUpdate(TestRules):
    title: Optional[str] = None
    description: Optional[str] = None
    grade: Optional[str] = None
    subject: Optional[str] = None
    duration: Optional[int] = None
    passing_score: Optional[int] = None
    sections: Optional[List[SectionIn]] = None
    questions: Optional[List[QuestionIn]] = None
    tags: Optional[List[str]] = None
    settings: Optional[TestSettings] = None
    is_paid: Optional[bool] = None
    price: Optional[float] = None
    discount: Optional[float] = None
    access_duration: Optional[int] = None
    is_series_test: Optional[bool] = None
    series_id: Optional[str] = None

    @root_validator(pre=True)
    def validate_nulls(cls, values):
        return reject_nulls(values, NULLABLE_TEST_FIELDS)


class TestStatusUpdate(BaseModel):
    status: TestStatus

    class Config:
        use_enum_values = True


# ==================== ATTEMPT MODELS ====================

class SaveProgressRequest(BaseModel):
    answers: Dict[str, Any] = {}
    time_left: Optional[int] = None


class SubmitRequest(BaseModel):
    answers: Dict[str, Any] = {}
    time_left: Optional[int] = None
