from optistore.models.prescription import Prescription
from optistore.models.order import Order, OrderItem, OrderPayment, OrderStatus
from optistore.models.customer_history import CustomerHistory

__all__ = ["Prescription", "Order", "OrderItem", "OrderPayment", "OrderStatus", "CustomerHistory"]
