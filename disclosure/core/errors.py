class DisclosureError(Exception):
    code = "error"
    http_status = 500
    retryable = False

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        # ids only; field values never end up here
        self.context = context


class ValidationError(DisclosureError):
    code = "validation_error"
    http_status = 422


class NotFoundError(DisclosureError):
    code = "not_found"
    http_status = 404


class ConflictError(DisclosureError):
    """Uniqueness violation on grant insert. Handled inside the service."""
    code = "conflict"
    http_status = 409


class TransientStoreError(DisclosureError):
    code = "store_unavailable"
    http_status = 503
    retryable = True


class AuthenticationError(DisclosureError):
    code = "unauthenticated"
    http_status = 401


class AuthorizationError(DisclosureError):
    code = "forbidden"
    http_status = 403
