"""Request and response models for the REST API.

Field names are snake_case in Python and camelCase on the wire; every model
accepts either spelling on input and emits camelCase.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from models import Book, FineStatus, HistoryRecord, RequestStatus, Role, User


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Catalog ---
class BorrowerModel(CamelModel):
    user_id: str
    user_name: str = ""


class BookModel(CamelModel):
    id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    author: str = Field(..., min_length=1)
    category: str = "General"
    year: Optional[int] = None
    isbn: str = ""
    cover_url: str = ""
    price: float = Field(0.0, ge=0)
    total_copies: int = Field(1, ge=0)
    available_copies: Optional[int] = Field(None, ge=0, description="Defaults to totalCopies")
    current_borrowers: List[BorrowerModel] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_counters(self):
        if self.available_copies is None:
            self.available_copies = self.total_copies
        if self.available_copies > self.total_copies:
            raise ValueError("availableCopies cannot exceed totalCopies")
        return self

    def to_domain(self) -> Book:
        return Book.from_dict(self.model_dump(by_alias=True))


class UserModel(CamelModel):
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    role: Role = Role.STUDENT
    user_class: str = Field("", alias="class")
    avatar_url: str = ""

    def to_domain(self) -> User:
        return User.from_dict(self.model_dump(by_alias=True))


# --- Requests and waitlists ---
class RequestCreateModel(CamelModel):
    book_id: str
    user_id: str


class RequestModel(CamelModel):
    id: str
    book_id: str
    book_title: str = ""
    user_id: str
    user_name: str = ""
    status: RequestStatus
    timestamp: int


class RequestStatusUpdate(CamelModel):
    status: RequestStatus


class QueueEntryModel(CamelModel):
    position: int
    request_id: str
    book_id: str
    book_title: str = ""
    user_id: str
    user_name: str = ""
    timestamp: int


# --- Ledger ---
class HistoryModel(CamelModel):
    id: str = Field(..., min_length=1)
    book_id: str
    book_title: str = ""
    user_id: str
    user_name: str = ""
    borrow_date: Optional[int] = None
    return_date: Optional[int] = None

    def to_domain(self) -> HistoryRecord:
        return HistoryRecord.from_dict(self.model_dump(by_alias=True))


class HistoryUpdate(CamelModel):
    return_date: Optional[int] = Field(None, description="Defaults to now")


class ResolutionResponse(CamelModel):
    request: RequestModel
    book: Optional[BookModel] = None
    history_record: Optional[HistoryModel] = None


# --- Fines and returns ---
class FineAssessmentModel(CamelModel):
    amount: float = Field(..., ge=0)
    reason: str = ""


class ReturnCreateModel(CamelModel):
    book_id: str
    user_id: str
    fine: Optional[FineAssessmentModel] = None


class FineCreateModel(CamelModel):
    id: Optional[str] = None
    user_id: str
    user_name: str = ""
    book_id: str
    book_title: str = ""
    amount: float = Field(..., gt=0)
    reason: str = ""


class FineModel(CamelModel):
    id: str
    user_id: str
    user_name: str = ""
    book_id: str
    book_title: str = ""
    amount: float
    reason: str = ""
    status: FineStatus
    timestamp: int


class FineStatusUpdate(CamelModel):
    status: FineStatus


class ReturnResponse(CamelModel):
    book: BookModel
    history_record: Optional[HistoryModel] = None
    fine: Optional[FineModel] = None


# --- Statistics ---
class ReaderCountModel(CamelModel):
    user_id: str
    user_name: str = ""
    count: int


class TrendPointModel(CamelModel):
    date: str
    borrowed: int
    returned: int


class StatsModel(CamelModel):
    total_titles: int
    total_copies: int
    available_copies: int
    issued_copies: int
    utilization: float
    active_loans: int
    pending_requests: int
    paid_fine_revenue: float
    outstanding_fines: float
    category_distribution: Dict[str, int]
    top_readers: List[ReaderCountModel]
    borrowing_trend: List[TrendPointModel]
    drifted_books: List[str]


# --- Auth and misc ---
class LoginRequest(CamelModel):
    password: str


class SessionModel(CamelModel):
    token: str
    expires_at: int


class PasswordChangeRequest(CamelModel):
    current_password: str
    new_password: str


class UploadResponse(CamelModel):
    url: str


class MessageResponse(CamelModel):
    message: str
    deleted: Optional[int] = None
