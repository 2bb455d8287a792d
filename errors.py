"""Exceptions raised by the back-office services.

Routes turn these into a flash message or a JSON error body.
"""


class BackOfficeError(Exception):
    status_code = 400

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {'success': False, 'message': self.message}


class ValidationError(BackOfficeError):
    pass


class TransitionError(BackOfficeError):
    status_code = 409


class NotFoundError(BackOfficeError):
    status_code = 404


class AuthError(BackOfficeError):
    status_code = 401
