"""
Pydantic schemas for API request/response models.
"""
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator

from school_payments.core.money import parse_amount

Number = Union[int, float]


class StudentInfo(BaseModel):
    """Student the fee is paid for."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    name: str = Field(..., min_length=1, description="Student name")
    id: str = Field(..., min_length=1, description="Student identifier")
    email: str = Field(..., min_length=1, description="Student email")


class CreatePaymentRequest(BaseModel):
    """Request schema for creating a payment."""

    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={
            "examples": [
                {
                    "amount": "1000",
                    "callback_url": "https://school.example.com/payment/callback",
                    "student_info": {
                        "name": "Asha Verma",
                        "id": "STU-0042",
                        "email": "asha@example.com",
                    },
                }
            ]
        },
    )

    amount: str = Field(..., min_length=1, description="Amount as a numeric string (e.g. 1000)")
    callback_url: HttpUrl = Field(..., description="Where the gateway redirects the payer")
    student_info: StudentInfo

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: str) -> str:
        """Amount must be a positive number."""
        if parse_amount(v) <= 0:
            raise ValueError("Amount must be positive")
        return v.strip()


class CreatePaymentResponse(BaseModel):
    """Response schema for payment creation."""

    success: bool = Field(..., description="Always true on this path")
    message: str = Field(..., description="Human readable outcome")
    collect_request_id: str = Field(..., description="Gateway collect request id")
    collect_request_url: Optional[str] = Field(
        default=None, description="Payment page URL returned by the gateway"
    )
    custom_order_id: str = Field(..., description="Public order id")
    order_id: str = Field(..., description="Internal order id")


class TransactionStatus(BaseModel):
    """Stored status next to the live gateway view."""

    custom_order_id: str
    collect_id: str
    amount: Number
    status: str = Field(..., description="Locally stored status (pending when none)")
    payment_details: Optional[Dict[str, Any]] = Field(
        default=None, description="Stored status row"
    )
    gateway_response: Any = Field(default=None, description="Live gateway body, untouched")


class TransactionStatusResponse(BaseModel):
    """Response schema for on-demand status checks."""

    success: bool
    order_info: TransactionStatus


class TransactionQuery(BaseModel):
    """Query parameters of the transaction listings."""

    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=1000)
    sort: str = Field(default="createdAt")
    order: Literal["asc", "desc"] = Field(default="desc")
    status: Optional[str] = Field(default=None)
    school_id: Optional[str] = Field(default=None)


class TransactionRow(BaseModel):
    """One row of the reporting view."""

    id: str
    collect_id: str
    school_id: str
    gateway: str
    order_amount: Number
    transaction_amount: Number
    status: str
    custom_order_id: str
    student_info: Dict[str, Any]
    payment_time: Optional[str] = None
    createdAt: Optional[str] = None
    status_details: Optional[Dict[str, Any]] = None


class Pagination(BaseModel):
    """Paging metadata."""

    page: int
    limit: int
    total: int
    pages: int


class TransactionListResponse(BaseModel):
    """Response schema for transaction listings."""

    success: bool
    data: List[TransactionRow]
    pagination: Pagination


class WebhookResponse(BaseModel):
    """Response schema for webhook processing."""

    success: bool = Field(..., description="Whether the callback was reconciled")
    message: str = Field(..., description="Processing outcome")
    webhook_id: str = Field(..., description="Id of the webhook log row")
    error: Optional[str] = Field(default=None, description="Failure reason")


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status (healthy/unhealthy)")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual service checks")
    message: Optional[str] = Field(default=None, description="Status message")
