from fastapi import APIRouter, Depends

from ..container import Container, get_container
from ..schemas import CreateOrderInput, ReasonInput, StatusInput

router = APIRouter(prefix="/v1/orders", tags=["orders"])


@router.post("", status_code=201)
def create_order(payload: CreateOrderInput, c: Container = Depends(get_container)):
    result = c.orders.create_order(payload)
    return {"success": True, "message": "Order created successfully", "data": result.model_dump(mode="json")}


@router.get("/user/{user_id}")
def list_user_orders(user_id: int, c: Container = Depends(get_container)):
    orders = c.orders.list_user_orders(user_id)
    return {"success": True, "data": {"total_count": len(orders),
                                      "orders": [o.model_dump(mode="json") for o in orders]}}


@router.get("/{order_id}")
def get_order(order_id: int, c: Container = Depends(get_container)):
    return {"success": True, "data": c.orders.get_order(order_id).model_dump(mode="json")}


@router.post("/{order_id}/cancel")
def cancel_order(order_id: int, payload: ReasonInput, c: Container = Depends(get_container)):
    order = c.orders.cancel_order(order_id, payload.reason)
    return {"success": True, "data": order.model_dump(mode="json")}


@router.post("/{order_id}/refund")
def refund_order(order_id: int, payload: ReasonInput, c: Container = Depends(get_container)):
    order = c.orders.refund_order(order_id, payload.reason)
    return {"success": True, "data": order.model_dump(mode="json")}


@router.patch("/{order_id}/status")
def update_status(order_id: int, payload: StatusInput, c: Container = Depends(get_container)):
    order = c.orders.update_status(order_id, payload.status)
    return {"success": True, "data": order.model_dump(mode="json")}
