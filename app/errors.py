from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


def _error_payload(code: str, message: str, details):
    return {"code": code, "message": message, "details": details}


# ---------------------------------------------------------------------------
# Domain errors
#
# Raised by the service layer and rendered by the handlers below. The detail
# is always a {"code", "message", "details"} dict.
# ---------------------------------------------------------------------------


class IssueControlError(HTTPException):
    status_code = 400
    code = "issue_control_error"
    default_message = "Request failed"

    def __init__(self, message: str | None = None, details=None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(
            status_code=self.status_code,
            detail={"code": self.code, "message": self.message, "details": details},
        )

    def __str__(self) -> str:
        return self.message


class NotFound(IssueControlError):
    status_code = 404
    code = "not_found"
    default_message = "Not found"


class ValidationFailed(IssueControlError):
    """Issue preconditions are not met; ``details`` lists the reasons."""

    status_code = 422
    code = "validation_failed"
    default_message = "Document failed issue validation"


class InvariantViolation(IssueControlError):
    status_code = 409
    code = "invariant_violation"
    default_message = "Operation would violate a document invariant"


class DraftAlreadyExists(InvariantViolation):
    code = "draft_already_exists"
    default_message = "A draft version already exists for this document"


class DocumentLocked(InvariantViolation):
    status_code = 423
    code = "document_locked"
    default_message = "Document is issued or superseded and cannot be modified"


class ConcurrencyConflict(IssueControlError):
    status_code = 409
    code = "concurrency_conflict"
    default_message = "Another writer changed this document family; retry the operation"


class DependencyUnavailable(IssueControlError):
    status_code = 503
    code = "dependency_unavailable"
    default_message = "A required service is unavailable"


class DocumentNotIssued(IssueControlError):
    status_code = 409
    code = "document_not_issued"
    default_message = "Document must be issued to generate a defence pack"


class RenderedArtifactMissing(IssueControlError):
    status_code = 409
    code = "rendered_artifact_missing"
    default_message = "Document must have a rendered artifact to generate a defence pack"


def register_error_handlers(app) -> None:
    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        detail = exc.detail
        code = f"http_{exc.status_code}"
        message = "Request failed"
        details = None
        if isinstance(detail, dict):
            code = detail.get("code", code)
            message = detail.get("message", message)
            details = detail.get("details")
        elif isinstance(detail, str):
            message = detail
        else:
            details = detail
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_payload(code, message, details),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        # exc.errors() ctx may contain raw Exception objects (not JSON-serialisable).
        errors = [
            {k: str(v) if k == "ctx" else v for k, v in err.items()}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=422,
            content=_error_payload("validation_error", "Validation error", errors),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        return JSONResponse(
            status_code=500,
            content=_error_payload("internal_error", "Internal server error", None),
        )
