"""Error types raised by the planner core and rendered by app.py."""


class PlannerError(Exception):
    status_code = 400

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {'error': self.message}


class ValidationError(PlannerError):
    status_code = 400


class InvalidRangeError(ValidationError):
    """Window start falls after window end."""


class NotFoundError(PlannerError):
    status_code = 404


class ConflictError(PlannerError):
    status_code = 409
