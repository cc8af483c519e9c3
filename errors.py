"""
errors.py – exception hierarchy shared by the flows, façades and HTTP layer
"""


class PortalError(Exception):
    """Base error; ``message`` is safe to show to the user."""

    status_code = 500
    fallback = "An unexpected error occurred"

    def __init__(self, message: str = ""):
        self.message = message or self.fallback
        super().__init__(self.message)


class UploadValidationError(PortalError):
    status_code = 400
    fallback = "Please ensure you're uploading a valid PDF file under 10MB."


class ExtractionError(PortalError):
    status_code = 422
    fallback = (
        "We encountered an error while processing your PDF. "
        "Please try again or use a different file."
    )


class PersistenceError(PortalError):
    status_code = 500
    fallback = "The exam store could not complete the request."


class ExamNotFound(PersistenceError):
    status_code = 404
    fallback = "Exam not found"


class InvalidTransition(PortalError):
    status_code = 409
    fallback = "That action is not available right now."
