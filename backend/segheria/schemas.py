"""Pydantic schemas for API."""
from pydantic import BaseModel, Field, ConfigDict
from typing import Any, Optional
from datetime import date, datetime
from uuid import UUID


ROLE_PATTERN = "^(admin|collaboratore|operatore)$"


# User schemas
class UserBase(BaseModel):
    email: str
    name: str
    role: str


class UserResponse(UserBase):
    id: UUID
    registration_status: str
    email_confirmed: bool
    is_active: bool
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class AdminUserResponse(UserResponse):
    """Administrators also see the pending one-time code."""
    otp: Optional[str] = None
    otp_expires_at: Optional[datetime] = None


class AuthUserResponse(UserResponse):
    permissions: dict[str, bool] = Field(default_factory=dict)
    pages: list[str] = Field(default_factory=list)
    home_page: Optional[str] = None


# Auth schemas
class LoginRequest(BaseModel):
    email: str
    password: str


class FirstAccessRequest(BaseModel):
    email: str
    otp: str = Field(min_length=1, max_length=32)


class SetPasswordRequest(BaseModel):
    password: str
    confirm_password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: AuthUserResponse


class AdminCreateUserRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=3, max_length=255)
    role: str = Field(default="collaboratore", pattern=ROLE_PATTERN)


class AdminCreateUserResponse(BaseModel):
    user: AdminUserResponse
    otp: str
    otp_expires_at: datetime


class AdminUpdateUserRequest(BaseModel):
    name: Optional[str] = Field(default=None, max_length=255)
    role: Optional[str] = Field(default=None, pattern=ROLE_PATTERN)


class ManualResetPasswordRequest(BaseModel):
    email: str
    new_password: str


# Order line schemas
class StampResponse(BaseModel):
    timestamp: datetime
    user: str


class DeliveryEventCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    delivered_on: Optional[date] = Field(default=None, alias="data")
    note: Optional[str] = None


class DeliveryEventResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    index: int
    delivered_on: date = Field(alias="data")
    note: str = ""


class LineActions(BaseModel):
    confirm_production: bool
    toggle_ready: bool
    confirm_delivery: bool
    confirm_ddt: bool
    edit_delivery_date: bool


class LineResponse(BaseModel):
    id: int
    order_id: UUID
    order_number: Optional[str] = None
    client_id: Optional[UUID] = None
    client_name: Optional[str] = None
    product_id: int
    product_name: Optional[str] = None
    dimensions: Optional[str] = None
    heat_treated: bool = False
    status: str
    status_label: str
    group_code: Optional[str] = None
    is_group_first: bool = False
    is_group_last: bool = False
    quantity: Optional[int] = None
    delivery_date: Optional[date] = None
    note: str = ""
    note_pending: bool = False
    deliveries: list[DeliveryEventResponse] = Field(default_factory=list)
    production_confirmed_at: Optional[StampResponse] = None
    completed_at: Optional[StampResponse] = None
    actions: LineActions


class AffectedLinesResponse(BaseModel):
    """Lines touched by one operation (the whole group for grouped lines)."""
    line_ids: list[int]
    lines: list[LineResponse]


class CreateGroupRequest(BaseModel):
    line_ids: list[int]


class GroupResponse(BaseModel):
    group_code: str
    line_ids: list[int]
    consistent: bool = True


class DeliveryDateUpdate(BaseModel):
    delivery_date: date


class NoteUpdate(BaseModel):
    note: str = Field(default="", max_length=10000)


class NoteResponse(BaseModel):
    line_id: int
    note: str
    pending: bool


# Client schemas
class ClientBase(BaseModel):
    company_name: str = Field(min_length=1, max_length=255)
    vat_number: Optional[str] = Field(default=None, max_length=50)
    email: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=50)
    addresses: list[str] = Field(default_factory=list)


class ClientCreate(ClientBase):
    pass


class ClientUpdate(BaseModel):
    company_name: Optional[str] = Field(default=None, max_length=255)
    vat_number: Optional[str] = Field(default=None, max_length=50)
    email: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=50)
    addresses: Optional[list[str]] = None


class ClientResponse(ClientBase):
    id: UUID
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class ProductBase(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    dimensions: Optional[str] = Field(default=None, max_length=255)
    heat_treated: bool = False


class ProductCreate(ProductBase):
    pass


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(default=None, max_length=255)
    dimensions: Optional[str] = Field(default=None, max_length=255)
    heat_treated: Optional[bool] = None


class ProductResponse(ProductBase):
    id: int
    client_id: UUID
    model_config = ConfigDict(from_attributes=True)


# Order schemas
class OrderCreate(BaseModel):
    client_id: UUID
    order_number: Optional[str] = Field(default=None, max_length=50)
    ordered_at: Optional[datetime] = None
    note: Optional[str] = None


class OrderUpdate(BaseModel):
    client_id: Optional[UUID] = None
    order_number: Optional[str] = Field(default=None, max_length=50)
    ordered_at: Optional[datetime] = None
    note: Optional[str] = None


class OrderResponse(BaseModel):
    id: UUID
    order_number: str
    client_id: UUID
    client_name: str
    ordered_at: Optional[datetime] = None
    note: Optional[str] = None
    latest_delivery_date: Optional[date] = None
    is_completed: bool = False
    line_count: int = 0


class OrderPage(BaseModel):
    items: list[OrderResponse]
    total: int
    page: int
    page_size: int


class OrderLineCreate(BaseModel):
    product_id: int
    quantity: int = Field(gt=0)
    delivery_date: date


class OrderLineUpdate(BaseModel):
    product_id: Optional[int] = None
    quantity: Optional[int] = Field(default=None, gt=0)
    delivery_date: Optional[date] = None


# Dashboard schemas
class StatusShare(BaseModel):
    status: str
    label: str
    count: int
    percentage: float


class MonthlyOrders(BaseModel):
    month: str
    orders: int


class ClientLines(BaseModel):
    name: str
    lines: int


class DashboardResponse(BaseModel):
    lines_in_production: int
    lines_in_delivery: int
    lines_late: int
    clients_in_production: int
    clients_in_delivery: int
    clients_with_late_lines: int
    total_clients: int
    average_products_per_client: float
    status_distribution: list[StatusShare]
    order_trend: list[MonthlyOrders]
    top_clients: list[ClientLines]


class MessageResponse(BaseModel):
    message: str
    details: Optional[dict[str, Any]] = None
