from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping, Optional, Sequence, TypeVar, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    ValidationError as PydanticValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from errors import ValidationError
from models import TransactionType, UserRole
from money import cents_to_decimal, parse_amount


class ApiModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


ModelT = TypeVar("ModelT", bound=BaseModel)


REQUEST_LOCATIONS = frozenset({"body", "query", "path", "header", "cookie"})


def error_details(errors: Sequence[Mapping[str, Any]]) -> list[dict[str, str]]:
    details = []
    for err in errors:
        field = ".".join(
            str(part) for part in err["loc"] if part not in REQUEST_LOCATIONS
        )
        ctx_error = (err.get("ctx") or {}).get("error")
        message = str(ctx_error) if ctx_error is not None else err["msg"]
        details.append({"field": field or "__root__", "message": message})
    return details


def parse_payload(
    model: type[ModelT], data: Union[ModelT, Mapping[str, Any]]
) -> ModelT:
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(
            "Invalid input", errors=error_details(exc.errors())
        ) from exc


def _required_text(value: object, label: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{label} must be text")
    clean = value.strip()
    if not clean:
        raise ValueError(f"{label} is required")
    return clean


class TransactionIn(ApiModel):
    type: TransactionType
    amount: Decimal
    category: str = Field(..., max_length=100)
    description: str = Field(..., max_length=200)

    @field_validator("amount", mode="before")
    @classmethod
    def _parse_amount(cls, value: object) -> Decimal:
        if not isinstance(value, (str, int, Decimal)) or isinstance(value, bool):
            raise ValueError("Amount must be a decimal string")
        return cents_to_decimal(parse_amount(value))

    @field_validator("category", mode="before")
    @classmethod
    def _clean_category(cls, value: object) -> str:
        return _required_text(value, "Category")

    @field_validator("description", mode="before")
    @classmethod
    def _clean_description(cls, value: object) -> str:
        return _required_text(value, "Description")

    @property
    def amount_cents(self) -> int:
        return int(self.amount * 100)


class SignupIn(ApiModel):
    first_name: str = Field(..., min_length=2, max_length=100)
    last_name: str = Field(..., min_length=2, max_length=100)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, min_length=10, max_length=32)
    password: str = Field(..., min_length=6, max_length=72)

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def _strip_names(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value

    @model_validator(mode="after")
    def _one_identifier(self) -> "SignupIn":
        if (self.email is None) == (self.phone is None):
            raise ValueError("Provide either an email or a phone number")
        return self


class SigninIn(ApiModel):
    email: Optional[str] = None
    phone: Optional[str] = None
    password: str = Field(..., min_length=1, max_length=72)

    @model_validator(mode="after")
    def _one_identifier(self) -> "SigninIn":
        if not (self.email or self.phone):
            raise ValueError("Provide an email or a phone number")
        return self

    @property
    def identifier(self) -> str:
        return self.email or self.phone or ""


class ProfileUpdateIn(ApiModel):
    first_name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    last_name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    profile_image_url: Optional[str] = Field(default=None, max_length=500)

    # Omitting a name leaves it unchanged; an explicit null cannot clear it.
    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def _names_not_null(cls, value: object) -> object:
        if value is None:
            raise ValueError("Name is required")
        return value.strip() if isinstance(value, str) else value


class GroupIn(ApiModel):
    name: str = Field(..., min_length=2, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value


class MemberIn(ApiModel):
    email: EmailStr
    can_add_expense: bool = False


class MemberPermissionIn(ApiModel):
    can_add_expense: bool


class PromoteIn(ApiModel):
    email: EmailStr


class UserOut(ApiModel):
    id: int
    email: Optional[str]
    phone: Optional[str]
    first_name: str
    last_name: str
    profile_image_url: Optional[str]
    role: UserRole
    created_at: datetime
    updated_at: datetime


class TransactionOut(ApiModel):
    id: int
    user_id: int
    group_id: Optional[int]
    type: TransactionType
    amount: Decimal
    category: str
    description: str
    occurred_at: datetime


class BalanceOut(ApiModel):
    balance: Decimal
    income: Decimal
    expenses: Decimal


class CategorySpendingOut(ApiModel):
    category: str
    amount: Decimal
    percentage: Decimal


class GroupOut(ApiModel):
    id: int
    admin_id: int
    name: str
    description: Optional[str]
    created_at: datetime
    updated_at: datetime


class MemberOut(ApiModel):
    id: int
    first_name: str
    last_name: str
    email: Optional[str]
    phone: Optional[str]
    can_add_expense: bool


class AuthOut(ApiModel):
    message: str
    user: UserOut
    csrf_token: Optional[str] = None


class MessageOut(ApiModel):
    message: str


class CategorySuggestionsOut(ApiModel):
    type: TransactionType
    suggestions: list[str]
