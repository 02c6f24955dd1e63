"""
Request schemas and field checks.

Each endpoint body is a pydantic model. Field checks raise ValueError with the
message shown to the client; the app's validation handler collects every
failing field into ``{"field", "message"}`` pairs.
"""
import math
import re
from typing import Annotated, Any, Dict, List, Optional
from urllib.parse import urlparse

from email_validator import EmailNotValidError, validate_email
from pydantic import BaseModel, BeforeValidator, Field, field_validator

NAME_PATTERN = re.compile(r"^[a-zA-Z\s]+$")
PHONE_PATTERN = re.compile(r"^[0-9+\-\s()]+$")
PASSWORD_PATTERN = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)")

CONDITIONS = ("New", "Like New", "Good", "Fair", "Poor")
ITEM_CATEGORIES = ("textbooks", "electronics", "clothing", "furniture", "other")
JOB_TYPES = ("full-time", "part-time", "contract", "freelance", "internship", "temporary")
BUDGET_CATEGORIES = ("Food", "Transportation", "Entertainment", "Other")
SPLIT_TYPES = ("equal", "shares")


# Field checks
def required_text(value: Any, message: str, trim: bool = True) -> str:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str):
        raise ValueError(message)
    if trim:
        value = value.strip()
    if not value:
        raise ValueError(message)
    return value


def check_length(value: str, message: str, min_length: int = 0, max_length: Optional[int] = None) -> str:
    if len(value) < min_length or (max_length is not None and len(value) > max_length):
        raise ValueError(message)
    return value


def check_pattern(value: str, pattern, message: str) -> str:
    if not pattern.match(value):
        raise ValueError(message)
    return value


def check_float(value: Any, message: str, minimum: float = 0.0) -> float:
    if isinstance(value, bool) or value is None:
        raise ValueError(message)
    if isinstance(value, str):
        value = value.strip()
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError(message)
    if math.isnan(number) or math.isinf(number) or number < minimum:
        raise ValueError(message)
    return number


def check_choice(value: Any, choices, message: str) -> str:
    if value not in choices:
        raise ValueError(message)
    return value


def check_url(value: str, message: str) -> str:
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or "." not in parsed.netloc:
        raise ValueError(message)
    return value


def normalize_email(value: Any) -> str:
    value = required_text(value, "Email is required")
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError:
        raise ValueError("Please provide a valid email address")
    return value.lower()


def check_password(value: Any) -> str:
    value = required_text(value, "Password is required", trim=False)
    check_length(value, "Password must be at least 6 characters", 6)
    return check_pattern(
        value,
        PASSWORD_PATTERN,
        "Password must contain at least one uppercase letter, one lowercase letter, and one number",
    )


def check_phone(value: Any, required_message: str) -> str:
    value = required_text(value, required_message)
    check_length(value, "Phone number must be between 10 and 15 digits", 10, 15)
    return check_pattern(
        value,
        PHONE_PATTERN,
        "Phone number can only contain numbers, +, -, spaces, and parentheses",
    )


EmailField = Annotated[str, BeforeValidator(normalize_email)]
PasswordField = Annotated[str, BeforeValidator(check_password)]


# Auth
class RegisterRequest(BaseModel):
    name: str = Field(None, validate_default=True)
    email: EmailField = Field(None, validate_default=True)
    password: PasswordField = Field(None, validate_default=True)

    @field_validator("name", mode="before")
    @classmethod
    def check_name(cls, value):
        value = required_text(value, "Name is required")
        check_length(value, "Name must be between 2 and 50 characters", 2, 50)
        return check_pattern(value, NAME_PATTERN, "Name can only contain letters and spaces")


class LoginRequest(BaseModel):
    email: EmailField = Field(None, validate_default=True)
    password: str = Field(None, validate_default=True)

    @field_validator("password", mode="before")
    @classmethod
    def check_password_present(cls, value):
        return required_text(value, "Password is required", trim=False)


class OTPVerifyRequest(BaseModel):
    email: EmailField = Field(None, validate_default=True)
    otp: str = Field(None, validate_default=True)

    @field_validator("otp", mode="before")
    @classmethod
    def check_otp(cls, value):
        value = required_text(value, "OTP is required")
        check_length(value, "OTP must be 6 digits", 6, 6)
        if not value.isdigit():
            raise ValueError("OTP must be numeric")
        return value


class EmailRequest(BaseModel):
    email: EmailField = Field(None, validate_default=True)


class ResetPasswordRequest(BaseModel):
    token: str = Field(None, validate_default=True)
    newPassword: str = Field(None, validate_default=True)

    @field_validator("token", mode="before")
    @classmethod
    def check_token(cls, value):
        return required_text(value, "Reset token is required")

    @field_validator("newPassword", mode="before")
    @classmethod
    def check_new_password(cls, value):
        if value is None or value == "":
            raise ValueError("New password is required")
        return check_password(value)


# Listings
class MarketplaceItemRequest(BaseModel):
    title: str = Field(None, validate_default=True)
    description: str = Field(None, validate_default=True)
    price: float = Field(None, validate_default=True)
    image: str = Field(None, validate_default=True)
    condition: Optional[str] = None
    category: Optional[str] = None
    sellerPhone: str = Field(None, validate_default=True)

    @field_validator("title", mode="before")
    @classmethod
    def check_title(cls, value):
        value = required_text(value, "Title is required")
        return check_length(value, "Title must be between 3 and 100 characters", 3, 100)

    @field_validator("description", mode="before")
    @classmethod
    def check_description(cls, value):
        value = required_text(value, "Description is required")
        return check_length(value, "Description must be between 10 and 1000 characters", 10, 1000)

    @field_validator("price", mode="before")
    @classmethod
    def check_price(cls, value):
        if value is None or value == "":
            raise ValueError("Price is required")
        return check_float(value, "Price must be a positive number")

    @field_validator("image", mode="before")
    @classmethod
    def check_image(cls, value):
        value = required_text(value, "Image URL is required")
        return check_url(value, "Please provide a valid image URL")

    @field_validator("condition", mode="before")
    @classmethod
    def check_condition(cls, value):
        if value is None:
            return None
        return check_choice(value, CONDITIONS, "Invalid condition")

    @field_validator("category", mode="before")
    @classmethod
    def check_category(cls, value):
        if value is None:
            return None
        return check_choice(value, ITEM_CATEGORIES, "Invalid category")

    @field_validator("sellerPhone", mode="before")
    @classmethod
    def check_seller_phone(cls, value):
        return check_phone(value, "Phone number is required")


class JobRequest(BaseModel):
    title: str = Field(None, validate_default=True)
    company: str = Field(None, validate_default=True)
    description: str = Field(None, validate_default=True)
    jobType: str = Field(None, validate_default=True)
    location: str = Field(None, validate_default=True)
    hourlyRate: Optional[float] = None
    requirements: Optional[List[str]] = None
    contactEmail: EmailField = Field(None, validate_default=True)
    contactPhone: Optional[str] = None

    @field_validator("title", mode="before")
    @classmethod
    def check_title(cls, value):
        value = required_text(value, "Job title is required")
        return check_length(value, "Title must be between 3 and 100 characters", 3, 100)

    @field_validator("company", mode="before")
    @classmethod
    def check_company(cls, value):
        value = required_text(value, "Company/Department is required")
        return check_length(value, "Company name cannot exceed 100 characters", 0, 100)

    @field_validator("description", mode="before")
    @classmethod
    def check_description(cls, value):
        value = required_text(value, "Job description is required")
        return check_length(value, "Description must be between 20 and 2000 characters", 20, 2000)

    @field_validator("jobType", mode="before")
    @classmethod
    def check_job_type(cls, value):
        if value is None or value == "":
            raise ValueError("Job type is required")
        return check_choice(value, JOB_TYPES, "Invalid job type")

    @field_validator("location", mode="before")
    @classmethod
    def check_location(cls, value):
        value = required_text(value, "Location is required")
        return check_length(value, "Location cannot exceed 200 characters", 0, 200)

    @field_validator("hourlyRate", mode="before")
    @classmethod
    def check_hourly_rate(cls, value):
        if value is None:
            return None
        return check_float(value, "Hourly rate must be a positive number")

    @field_validator("requirements", mode="before")
    @classmethod
    def check_requirements(cls, value):
        if value is None:
            return None
        if not isinstance(value, list):
            raise ValueError("Requirements must be an array")
        return [str(item) for item in value]

    @field_validator("contactPhone", mode="before")
    @classmethod
    def check_contact_phone(cls, value):
        if value is None:
            return None
        return check_phone(value, "Phone number must be between 10 and 15 digits")


# Trackers. Bodies are loose; business checks live in the tracker services.
class BillPersonRequest(BaseModel):
    name: Any = None
    note: Any = None
    initialBalance: Any = None


class BillExpenseRequest(BaseModel):
    description: Any = None
    amount: Any = None
    payer: Any = None
    date: Any = None
    splitType: Any = None
    shares: Any = None


class BudgetSettingsRequest(BaseModel):
    totalBudget: Optional[float] = None
    categoryBudgets: Optional[Dict[str, float]] = None

    @field_validator("totalBudget", mode="before")
    @classmethod
    def check_total_budget(cls, value):
        if value is None:
            return None
        return check_float(value, "Total budget must be a non-negative number")

    @field_validator("categoryBudgets", mode="before")
    @classmethod
    def check_category_budgets(cls, value):
        if value is None:
            return None
        if not isinstance(value, dict):
            raise ValueError("Category budgets must be an object")
        budgets = {}
        for category, amount in value.items():
            check_choice(category, BUDGET_CATEGORIES, f"Invalid category: {category}")
            budgets[category] = check_float(amount, f"Budget for {category} must be a non-negative number")
        return budgets


class BudgetExpenseRequest(BaseModel):
    category: Any = None
    amount: Any = None
    description: Any = None
