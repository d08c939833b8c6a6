# Overview: Request decorators for API routes (actor header, domain error mapping).

from functools import wraps
from flask import request, jsonify, g, current_app

from .validation import ValidationError, ConflictError, NotFoundError
from .services.lifecycle_service import LifecycleError
from .services.installment_service import InstallmentError
from .services.invoice_service import InvoiceError
from .services.inventory_service import InventoryError
from .services.purchasing_service import PurchasingError
from .services.accounting_service import AccountingError
from .services.automation_service import AutomationError
from .services.bill_service import BillError
from .services.ledger_service import LedgerError


ACTOR_HEADER = "X-Actor-Id"

DOMAIN_ERRORS = (
    LifecycleError,
    InstallmentError,
    InvoiceError,
    InventoryError,
    PurchasingError,
    AccountingError,
    AutomationError,
    BillError,
    LedgerError,
)


def require_actor(f):
    """
    Require the acting user's identifier on every mutating request.

    Sets g.actor. Identity is opaque here: authentication happens upstream,
    this only guarantees the audit trail has a name on it.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor = (request.headers.get(ACTOR_HEADER) or "").strip()
        if not actor:
            return jsonify({"error": f"{ACTOR_HEADER} header is required"}), 400
        g.actor = actor
        return f(*args, **kwargs)

    return decorated_function


def _error_body(exc: Exception) -> dict:
    to_dict = getattr(exc, "to_dict", None)
    return to_dict() if callable(to_dict) else {"error": str(exc)}


def error_response(exc: Exception):
    """
    Map a domain exception to a JSON error response, by exception type.

    404: NotFoundError subclasses
    409: ConflictError subclasses (duplicates and state conflicts such as an
         invalid transition, unavailable units, an existing plan or an overpayment)
    400: ValidationError and every other domain rule violation
    """
    if isinstance(exc, NotFoundError):
        return jsonify(_error_body(exc)), 404
    if isinstance(exc, ConflictError):
        return jsonify(_error_body(exc)), 409
    if isinstance(exc, (ValidationError,) + DOMAIN_ERRORS):
        return jsonify(_error_body(exc)), 400
    return None


def handle_service_errors(f):
    """
    Translate service exceptions into JSON responses.

    Unexpected exceptions are logged with a traceback and answered with 500.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except Exception as exc:
            response = error_response(exc)
            if response is not None:
                return response
            current_app.logger.exception("Unhandled error in %s", request.path)
            return jsonify({"error": "Internal server error"}), 500

    return decorated_function
