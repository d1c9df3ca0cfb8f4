"""
Pydantic schemas for request/response validation in the back-office API.

These schemas define the structure of data for API requests and responses.
JSON keys are camelCase on the wire; Python attributes stay snake_case.
"""
from datetime import datetime
from decimal import Decimal
from typing import ClassVar, Optional, List, Dict, Literal, Tuple
from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator
from pydantic.alias_generators import to_camel

OrderStatus = Literal["PENDING", "PAID", "SHIPPED", "DELIVERED", "CANCELLED"]
PaymentMethod = Literal["cash", "card", "transfer"]
UserRole = Literal["ADMIN", "STAFF", "CUSTOMER"]


class ApiModel(BaseModel):
    """Base schema: camelCase aliases, populated from ORM objects."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class PartialUpdate(ApiModel):
    """
    Base for PATCH bodies. Omitted fields are left alone; fields listed in
    ``not_null`` map to NOT NULL columns and refuse an explicit ``null``.
    """
    not_null: ClassVar[Tuple[str, ...]] = ()

    @model_validator(mode="after")
    def reject_nulls(self):
        for name in self.not_null:
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{to_camel(name)} cannot be null")
        return self


# --- Users -----------------------------------------------------------------

class UserRegister(ApiModel):
    """Schema for user registration with password."""
    name: str = Field(..., min_length=2)
    email: EmailStr
    password: str = Field(..., min_length=6, description="Password must be at least 6 characters")


class UserLogin(ApiModel):
    """Schema for user login."""
    email: EmailStr
    password: str


class Token(ApiModel):
    """Schema for JWT token response."""
    access_token: str
    token_type: str = "bearer"


class User(ApiModel):
    """Schema for user responses, includes all database fields except password."""
    id: int
    name: str
    email: str
    role: UserRole
    is_active: bool
    created_at: datetime


class UserUpdate(PartialUpdate):
    """Schema for updating a user. All fields are optional."""
    not_null = ("role", "is_active")

    role: Optional[UserRole] = None
    is_active: Optional[bool] = None


# --- Categories ------------------------------------------------------------

class CategoryCreate(ApiModel):
    name: str = Field(..., min_length=2)
    description: Optional[str] = None
    parent_id: Optional[str] = None
    image: Optional[str] = None


class CategoryUpdate(PartialUpdate):
    not_null = ("name", "sort_order", "is_active")

    name: Optional[str] = Field(default=None, min_length=2)
    description: Optional[str] = None
    image: Optional[str] = None
    sort_order: Optional[int] = None
    is_active: Optional[bool] = None


class Category(ApiModel):
    id: str
    name: str
    slug: str
    description: Optional[str] = None
    parent_id: Optional[str] = None
    level: int
    sort_order: int
    is_active: bool
    image: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class CategoryNode(Category):
    """Category with its nested children, as returned by the tree endpoint."""
    children: List["CategoryNode"] = Field(default_factory=list)


class CategoryRef(ApiModel):
    id: str
    name: str


# --- Products --------------------------------------------------------------

class ProductCreate(ApiModel):
    name: str = Field(..., min_length=3)
    description: Optional[str] = None
    price: Decimal = Field(..., ge=0)
    stock: int = Field(..., ge=0)
    category_id: str = Field(..., min_length=1)
    barcode: Optional[str] = None
    images: List[str] = Field(..., min_length=1)


class ProductUpdate(PartialUpdate):
    """Schema for updating a product. Only provided fields are written."""
    not_null = ("name", "price", "stock", "category_id", "images")

    name: Optional[str] = Field(default=None, min_length=3)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, ge=0)
    stock: Optional[int] = Field(default=None, ge=0)
    category_id: Optional[str] = Field(default=None, min_length=1)
    barcode: Optional[str] = None
    images: Optional[List[str]] = Field(default=None, min_length=1)


class Product(ApiModel):
    id: str
    name: str
    description: Optional[str] = None
    price: Decimal
    stock: int
    barcode: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    category_id: str
    category: Optional[CategoryRef] = None
    created_at: datetime
    updated_at: datetime


class ProductPage(ApiModel):
    products: List[Product]
    total_products: int
    total_pages: int
    current_page: int
    has_next_page: bool
    has_prev_page: bool


class BulkDelete(ApiModel):
    product_ids: List[str] = Field(..., min_length=1)


class BulkUpdate(ApiModel):
    product_ids: List[str] = Field(..., min_length=1)
    price: Optional[Decimal] = Field(default=None, ge=0)
    stock: Optional[int] = Field(default=None, ge=0)
    category_id: Optional[str] = None


class BulkResult(ApiModel):
    affected: int
    skipped: List[str] = Field(default_factory=list)


# --- Stock -----------------------------------------------------------------

class StockUpdate(ApiModel):
    """Either an absolute ``stock`` or a signed ``adjustment`` must be given."""
    stock: Optional[int] = Field(default=None, ge=0)
    adjustment: Optional[int] = None
    reason: Optional[str] = Field(default=None, min_length=1)
    type: Optional[Literal["increase", "decrease", "set", "adjustment"]] = None
    reference: Optional[str] = None
    cost: Optional[Decimal] = None


class StockMovement(ApiModel):
    id: int
    product_id: str
    type: str
    quantity: int
    previous_stock: int
    new_stock: int
    reason: Optional[str] = None
    reference: Optional[str] = None
    cost: Optional[Decimal] = None
    user_id: Optional[int] = None
    created_at: datetime


class StockMovementSummary(ApiModel):
    previous_stock: int
    new_stock: int
    change: int
    type: str
    reason: str
    timestamp: datetime
    reference: Optional[str] = None


class ProductStockChange(Product):
    stock_movement: StockMovementSummary


class StockStatus(ApiModel):
    level: str
    color: str
    message: str


class StockMetrics(ApiModel):
    total_value: Decimal
    days_of_stock: int
    reorder_point: int
    minimum_stock: int
    average_usage: int


class StockAlert(ApiModel):
    id: str
    product_id: str
    product_name: str
    type: str
    priority: str
    severity: str
    message: str
    threshold: int
    current_stock: int
    current_value: Optional[Decimal] = None
    category: str
    actions: List[str] = Field(default_factory=list)
    acknowledged: bool = False
    timestamp: datetime


class ProductStockInfo(Product):
    stock_status: StockStatus
    stock_metrics: StockMetrics
    alerts: List[StockAlert]
    last_updated: datetime


class AlertSummary(ApiModel):
    total: int
    critical: int
    low: int
    reorder: int
    overstock: int
    high_value: int


class AlertList(ApiModel):
    alerts: List[StockAlert]
    summary: AlertSummary
    generated_at: datetime


class AlertRequest(ApiModel):
    product_ids: List[str]


# --- Customers -------------------------------------------------------------

class CustomerCreate(ApiModel):
    name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    email: Optional[EmailStr] = None
    address: Optional[str] = None


class CustomerUpdate(PartialUpdate):
    not_null = ("name", "phone")

    name: Optional[str] = Field(default=None, min_length=1)
    phone: Optional[str] = Field(default=None, min_length=1)
    email: Optional[EmailStr] = None
    address: Optional[str] = None


class Customer(ApiModel):
    id: str
    name: str
    phone: str
    email: Optional[str] = None
    address: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class CustomerWithStats(Customer):
    total_orders: int = 0
    total_spent: Decimal = Decimal("0")
    frequent_buyer: bool = False
    average_order_value: Optional[Decimal] = None


# --- Orders ----------------------------------------------------------------

class OrderLineIn(ApiModel):
    """Line requested at checkout. Price is never taken from the client."""
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)


class OrderCreate(ApiModel):
    """
    Checkout request.

    ``tax`` and ``total`` are what the till displayed; the server recomputes
    both and only logs a mismatch.
    """
    items: List[OrderLineIn] = Field(..., min_length=1)
    customer_id: Optional[str] = None
    payment_method: PaymentMethod = "card"
    discount: Decimal = Field(default=Decimal("0"), ge=0)
    tax: Decimal = Field(default=Decimal("0"), ge=0)
    total: Decimal = Field(..., ge=0)


class OrderItem(ApiModel):
    id: str
    order_id: str
    product_id: str
    product_name: Optional[str] = None
    quantity: int
    price: Decimal


class Order(ApiModel):
    id: str
    total: Decimal
    tax: Decimal
    discount: Decimal
    status: OrderStatus
    payment_method: str
    customer_id: Optional[str] = None
    user_id: Optional[int] = None
    created_at: datetime
    items: List[OrderItem] = Field(default_factory=list)


class OrderStatusUpdate(ApiModel):
    """Checked against ``models.ORDER_STATUSES`` by the endpoint."""
    status: str


class OrderEvent(ApiModel):
    """
    Schema for order timeline events.

    Attributes:
        id (int): Event ID
        order_id (str): Order identifier
        event_type (str): Type of event (created, status_changed)
        description (str): Human-readable event description
        old_value (str): Previous value (optional)
        new_value (str): New value (optional)
        user_id (int): User who triggered the event (optional)
        created_at (datetime): When the event occurred
    """
    id: int
    order_id: str
    event_type: str
    description: str
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    user_id: Optional[int] = None
    created_at: datetime


# --- Dashboard & analytics -------------------------------------------------

class TopProduct(ApiModel):
    product_id: str
    product_name: Optional[str] = None
    revenue: float
    quantity: int


class RecentOrder(ApiModel):
    id: str
    customer_name: str
    total: float
    status: str
    created_at: datetime


class LowStockProduct(ApiModel):
    id: str
    name: str
    stock: int
    min_stock: int


class SalesGrowth(ApiModel):
    daily: float
    weekly: float
    monthly: float


class DashboardStats(ApiModel):
    user_count: int
    product_count: int
    customer_count: int
    total_orders: int
    total_revenue: float
    sales_today: float
    orders_today: int
    sales_week: float
    orders_week: int
    sales_month: float
    orders_month: int
    average_order_value: float
    daily_average_sales: float
    top_products: List[TopProduct]
    recent_orders: List[RecentOrder]
    low_stock_products: List[LowStockProduct]
    sales_growth: SalesGrowth


class MonthlySales(ApiModel):
    month: str
    revenue: float
    orders: int
    growth: float


class SalesAnalytics(ApiModel):
    timeframe: str
    start_date: datetime
    end_date: datetime
    total_revenue: float
    total_orders: int
    average_order_value: float
    revenue_growth: float
    order_growth: float
    monthly_data: List[MonthlySales]
    top_products: List[TopProduct]


class TopCustomer(ApiModel):
    id: str
    name: str
    total_orders: int
    total_spent: float


class CustomerAnalytics(ApiModel):
    timeframe: str
    total_customers: int
    new_customers: int
    returning_customers: int
    top_customers: List[TopCustomer]


class TimeseriesPoint(ApiModel):
    date: str
    orders: int
    revenue: float


class Timeseries(ApiModel):
    days: int
    series: List[TimeseriesPoint]


class PaymentMethodStats(ApiModel):
    count: int
    total: float


class DailySales(ApiModel):
    sales: int
    revenue: float


class SalesReport(ApiModel):
    total_sales: int
    total_revenue: float
    total_tax: float
    total_discount: float
    payment_method_stats: Dict[str, PaymentMethodStats]
    daily_stats: Dict[str, DailySales]
