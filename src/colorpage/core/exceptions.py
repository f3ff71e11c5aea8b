"""Error taxonomy for Coloring Page Studio.

Every error the service reports to a client derives from
:class:`ColorPageError` and carries the HTTP status it maps to.  Core modules
raise these directly; the API layer renders them as ``{"error": message}``.

=========================  ======  ==========================================
Exception                  Status  Raised when
=========================  ======  ==========================================
ConfigurationError         500     a required secret or identifier is unset
ValidationError            400     a required field is missing or malformed
AuthorizationError         401     the shared-password hash is absent/wrong
WebhookSignatureError      400     a payment webhook fails verification
InsufficientCreditsError   402     the balance cannot cover a request
NotFoundError              404     a profile or stored image does not exist
UpstreamError              varies  the image vendor reports a failure
ImageGenerationError       500     the vendor returned no usable image data
LedgerError                500     the credit store cannot be read/written
=========================  ======  ==========================================
"""


class ColorPageError(Exception):
    """Base class for errors surfaced to API clients.

    The message is intended to be displayed directly to the user.
    """

    status_code: int = 500

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ConfigurationError(ColorPageError):
    status_code = 500


class ValidationError(ColorPageError):
    status_code = 400


class AuthorizationError(ColorPageError):
    status_code = 401


class WebhookSignatureError(ColorPageError):
    status_code = 400


class InsufficientCreditsError(ColorPageError):
    """The user's balance is lower than the cost of the request."""

    status_code = 402

    def __init__(self, required: int, available: int):
        super().__init__(
            f"Insufficient credits! You need {required} credit(s) but only have {available}."
        )
        self.required = required
        self.available = available


class NotFoundError(ColorPageError):
    status_code = 404


class UpstreamError(ColorPageError):
    """The image vendor rejected or failed a call; its status is passed through."""

    status_code = 500


class ImageGenerationError(ColorPageError):
    status_code = 500


class LedgerError(ColorPageError):
    status_code = 500
