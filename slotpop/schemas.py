
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List
from datetime import datetime
from decimal import Decimal

# ----------------------------
# Requests
# ----------------------------
class OrderItemInput(BaseModel):
    sku_id: str = Field(min_length=1)
    qty: int = Field(gt=0)

class CreateOrderInput(BaseModel):
    user_id: int
    address_id: int
    items: List[OrderItemInput] = Field(min_length=1)
    delivery_slot_id: Optional[int] = None

class ReasonInput(BaseModel):
    reason: str = Field(min_length=1)

class StatusInput(BaseModel):
    status: str

class AlertReviewInput(BaseModel):
    status: str
    reviewed_by: str = Field(min_length=1)

# ----------------------------
# Responses
# ----------------------------
class SlotAssignmentOut(BaseModel):
    requested: Optional[int]
    assigned: Optional[int]
    was_requested: bool
    was_fallback: bool
    fallback_reason: Optional[str] = None

class SlotOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    start_time: datetime
    end_time: datetime
    max_capacity: int
    current_usage: int
    available_capacity: int
    usage_percentage: float
    is_active: bool
    is_full: bool

class OrderItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    sku_id: str
    quantity: int
    unit_price: Decimal
    discount: Decimal
    subtotal: Decimal

class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    address_id: int
    delivery_slot_id: Optional[int]
    delivery_slot: Optional[SlotOut] = None
    total_amount: Decimal
    status: str
    notes: Optional[str] = None
    items: List[OrderItemOut] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

class OrderResult(BaseModel):
    order: OrderOut
    slot_assignment: SlotAssignmentOut

class RiskAlertOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_id: int
    risk_type: str
    risk_score: float
    top_rule: Optional[str] = None
    details: Optional[str] = None
    status: str
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime
