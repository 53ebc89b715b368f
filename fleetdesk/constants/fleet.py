from __future__ import annotations

VEHICLE_STATUSES = ["Available", "In Use", "Maintenance", "In Yard", "Inactive"]
VEHICLE_INACTIVE = "Inactive"

# vehicles that may receive a service note
SERVICEABLE_VEHICLE_STATUSES = ["In Yard", "Available"]

CONTRACT_ACTIVE = "Active"
CONTRACT_DEACTIVATED = "Cancelled"

INSPECTION_TYPES = {
    "CheckIn": "Check-In (return)",
    "CheckOut": "Check-Out (rental)",
}

SERVICE_NOTE_PRIORITIES = ["Low", "Medium", "High"]
SERVICE_NOTE_DEFAULT_PRIORITY = "Medium"

SERVICE_NOTE_STATUSES = ["Open", "In Progress", "Completed"]
SERVICE_NOTE_DEFAULT_STATUS = "Open"

PURCHASE_ORDER_STATUSES = ["Pending", "Received", "Cancelled"]
PURCHASE_ORDER_DEFAULT_STATUS = "Pending"
PURCHASE_ORDER_RECEIVED = "Received"
PURCHASE_ORDER_CANCELLED = "Cancelled"

COST_ORIGIN_SERVICE = "Service"
COST_ORIGIN_PURCHASE = "Purchase"

# check-in open longer than this is flagged as overdue
CHECKIN_OVERDUE_HOURS = 24

DEFAULT_MAINTENANCE_TYPES = [
    "Preventive",
    "Corrective",
    "Oil change",
    "Tires",
    "Brakes",
    "Electrical",
    "Bodywork",
]
