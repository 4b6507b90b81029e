from enum import Enum


class UserRole(str, Enum):
    CUSTOMER   = "customer"
    ADMIN      = "admin"
    SUPERADMIN = "superadmin"


class UserType(str, Enum):
    NEW      = "new"        # no completed order yet
    EXISTING = "existing"
    PREMIUM  = "premium"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED      = "fixed"     # flat amount in store currency


class OrderStatus(str, Enum):
    PENDING    = "pending"
    CONFIRMED  = "confirmed"
    PROCESSING = "processing"
    SHIPPED    = "shipped"
    DELIVERED  = "delivered"
    CANCELLED  = "cancelled"
