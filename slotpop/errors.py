"""Domain error taxonomy.

Every error carries a public ``message`` that is safe to hand back to a
caller. ``InternalError`` is the exception: its message is generic and the
underlying cause is only logged.
"""


class SlotPopError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(SlotPopError):
    """Malformed or missing input, rejected before any write."""
    status_code = 400


class InvalidStatusTransition(ValidationError):
    status_code = 409


class NotFound(SlotPopError):
    status_code = 404


class InventoryError(SlotPopError):
    status_code = 400

    def __init__(self, errors: list[str]):
        super().__init__("Inventory validation failed: " + ", ".join(errors))
        self.errors = list(errors)


class InternalError(SlotPopError):
    status_code = 500

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)


# ----------------------------
# Slot errors: converted into a fallback by the allocation policy
# ----------------------------
class SlotError(SlotPopError):
    status_code = 409

    def __init__(self, slot_id: int, message: str):
        super().__init__(message)
        self.slot_id = slot_id


class SlotNotFound(SlotError, NotFound):
    status_code = 404

    def __init__(self, slot_id: int):
        super().__init__(slot_id, f"Delivery slot with ID {slot_id} does not exist")


class SlotInactive(SlotError):
    def __init__(self, slot_id: int):
        super().__init__(slot_id, "Selected delivery slot is not currently active")


class SlotFull(SlotError):
    def __init__(self, slot_id: int):
        super().__init__(slot_id, "Selected delivery slot is fully booked")


class SlotExpired(SlotError):
    def __init__(self, slot_id: int):
        super().__init__(slot_id, "Selected delivery slot has already passed")


class CapacityExceeded(SlotError):
    def __init__(self, slot_id: int):
        super().__init__(slot_id, f"Delivery slot {slot_id} is already at maximum capacity")
