"""
Typed errors raised by the dispatch core.
Each carries the HTTP status the API layer answers with.
"""

class DispatchError(Exception):
    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

class ValidationError(DispatchError):
    """Malformed input, rejected before any state change"""
    status_code = 400

class NotFoundError(DispatchError):
    status_code = 404

class ForbiddenError(DispatchError):
    status_code = 403

class InvalidTransitionError(DispatchError):
    status_code = 409

    def __init__(self, current, requested):
        current_value = getattr(current, "value", current)
        requested_value = getattr(requested, "value", requested)
        super().__init__(f"Cannot move order from '{current_value}' to '{requested_value}'")
        self.current = current
        self.requested = requested

class ConflictError(DispatchError):
    """Another request changed the order first"""
    status_code = 409

class NoEligibleDriverError(DispatchError):
    status_code = 409
