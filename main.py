import logging
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import AuthService, get_auth_service, get_current_user, get_optional_user
from config import Settings
from crud import ListingService, job_service, marketplace_service
from database import DocumentStore, utcnow
from notifications import EmailSender
from ratelimit import api_limit, auth_limit, configure_limiter, limiter, otp_limit, rate_limit_exceeded_handler
from schemas import (
    BillExpenseRequest,
    BillPersonRequest,
    BudgetExpenseRequest,
    BudgetSettingsRequest,
    EmailRequest,
    JobRequest,
    LoginRequest,
    MarketplaceItemRequest,
    OTPVerifyRequest,
    RegisterRequest,
    ResetPasswordRequest,
)
from trackers import BillGroupService, BudgetService

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


# Service lookups
def get_marketplace(request: Request) -> ListingService:
    return request.app.state.marketplace


def get_jobs(request: Request) -> ListingService:
    return request.app.state.jobs


def get_bill_groups(request: Request) -> BillGroupService:
    return request.app.state.bill_groups


def get_budgets(request: Request) -> BudgetService:
    return request.app.state.budgets


@router.get("/health")
@api_limit
def health_check(request: Request):
    return {
        "status": "ok",
        "message": "Server is running",
        "timestamp": utcnow().isoformat(timespec="milliseconds") + "Z",
    }


# ========================================
# AUTH ROUTES
# ========================================

@router.post("/auth/send-otp")
@api_limit
@otp_limit
def send_otp(request: Request, payload: RegisterRequest, auth: AuthService = Depends(get_auth_service)):
    return auth.send_otp(payload.name, payload.email, payload.password)


@router.post("/auth/verify-otp", status_code=status.HTTP_201_CREATED)
@api_limit
@auth_limit
def verify_otp(request: Request, payload: OTPVerifyRequest, auth: AuthService = Depends(get_auth_service)):
    return auth.verify_otp(payload.email, payload.otp)


@router.post("/auth/resend-otp")
@api_limit
@otp_limit
def resend_otp(request: Request, payload: EmailRequest, auth: AuthService = Depends(get_auth_service)):
    return auth.resend_otp(payload.email)


@router.post("/auth/login")
@api_limit
@auth_limit
def login(request: Request, payload: LoginRequest, auth: AuthService = Depends(get_auth_service)):
    return auth.login(payload.email, payload.password)


@router.post("/auth/forgot-password")
@api_limit
@auth_limit
def forgot_password(request: Request, payload: EmailRequest, auth: AuthService = Depends(get_auth_service)):
    return auth.forgot_password(payload.email)


@router.post("/auth/reset-password")
@api_limit
@auth_limit
def reset_password(request: Request, payload: ResetPasswordRequest, auth: AuthService = Depends(get_auth_service)):
    return auth.reset_password(payload.token, payload.newPassword)


# ========================================
# MARKETPLACE ROUTES
# ========================================

@router.get("/marketplace/items")
@api_limit
def list_items(
    request: Request,
    current_user: Optional[dict] = Depends(get_optional_user),
    service: ListingService = Depends(get_marketplace),
):
    return service.list(current_user)


@router.post("/marketplace/items", status_code=status.HTTP_201_CREATED)
@api_limit
def create_item(
    request: Request,
    payload: MarketplaceItemRequest,
    current_user: dict = Depends(get_current_user),
    service: ListingService = Depends(get_marketplace),
):
    item = service.create(payload.model_dump(), current_user)
    return {"message": "Item listed successfully", "item": item}


@router.get("/marketplace/my-items")
@api_limit
def my_items(
    request: Request,
    current_user: dict = Depends(get_current_user),
    service: ListingService = Depends(get_marketplace),
):
    return service.mine(current_user)


@router.get("/marketplace/items/{item_id}")
@api_limit
def get_item(
    request: Request,
    item_id: str,
    current_user: Optional[dict] = Depends(get_optional_user),
    service: ListingService = Depends(get_marketplace),
):
    return service.get(item_id, current_user)


@router.put("/marketplace/items/{item_id}")
@api_limit
def update_item(
    request: Request,
    item_id: str,
    payload: MarketplaceItemRequest,
    current_user: dict = Depends(get_current_user),
    service: ListingService = Depends(get_marketplace),
):
    item = service.update(item_id, payload.model_dump(), current_user)
    return {"message": "Item updated successfully", "item": item}


@router.delete("/marketplace/items/{item_id}")
@api_limit
def delete_item(
    request: Request,
    item_id: str,
    current_user: dict = Depends(get_current_user),
    service: ListingService = Depends(get_marketplace),
):
    service.delete(item_id, current_user)
    return {"message": "Item deleted successfully"}


# ========================================
# JOB ROUTES
# ========================================

@router.get("/jobs")
@api_limit
def list_jobs(
    request: Request,
    current_user: Optional[dict] = Depends(get_optional_user),
    service: ListingService = Depends(get_jobs),
):
    return service.list(current_user)


@router.post("/jobs", status_code=status.HTTP_201_CREATED)
@api_limit
def create_job(
    request: Request,
    payload: JobRequest,
    current_user: dict = Depends(get_current_user),
    service: ListingService = Depends(get_jobs),
):
    job = service.create(payload.model_dump(), current_user)
    return {"message": "Job posted successfully", "job": job}


# Declared before /jobs/{job_id} so "my-jobs" is not taken for an id
@router.get("/jobs/my-jobs")
@api_limit
def my_jobs(
    request: Request,
    current_user: dict = Depends(get_current_user),
    service: ListingService = Depends(get_jobs),
):
    return service.mine(current_user)


@router.get("/jobs/{job_id}")
@api_limit
def get_job(
    request: Request,
    job_id: str,
    current_user: Optional[dict] = Depends(get_optional_user),
    service: ListingService = Depends(get_jobs),
):
    return service.get(job_id, current_user)


@router.put("/jobs/{job_id}")
@api_limit
def update_job(
    request: Request,
    job_id: str,
    payload: JobRequest,
    current_user: dict = Depends(get_current_user),
    service: ListingService = Depends(get_jobs),
):
    job = service.update(job_id, payload.model_dump(), current_user)
    return {"message": "Job updated successfully", "job": job}


@router.delete("/jobs/{job_id}")
@api_limit
def delete_job(
    request: Request,
    job_id: str,
    current_user: dict = Depends(get_current_user),
    service: ListingService = Depends(get_jobs),
):
    service.delete(job_id, current_user)
    return {"message": "Job deleted successfully"}


# ========================================
# BILL SPLITTER ROUTES
# ========================================

@router.get("/billgroup")
@api_limit
def get_bill_group(
    request: Request,
    current_user: dict = Depends(get_current_user),
    service: BillGroupService = Depends(get_bill_groups),
):
    return service.get(current_user)


@router.post("/billgroup/person")
@api_limit
def add_person(
    request: Request,
    payload: BillPersonRequest,
    current_user: dict = Depends(get_current_user),
    service: BillGroupService = Depends(get_bill_groups),
):
    return service.add_person(current_user, payload.name, payload.note, payload.initialBalance)


@router.delete("/billgroup/person/{person_id}")
@api_limit
def remove_person(
    request: Request,
    person_id: str,
    current_user: dict = Depends(get_current_user),
    service: BillGroupService = Depends(get_bill_groups),
):
    return service.remove_person(current_user, person_id)


@router.post("/billgroup/expense")
@api_limit
def add_bill_expense(
    request: Request,
    payload: BillExpenseRequest,
    current_user: dict = Depends(get_current_user),
    service: BillGroupService = Depends(get_bill_groups),
):
    return service.add_expense(
        current_user,
        payload.description,
        payload.amount,
        payload.payer,
        date=payload.date,
        split_type=payload.splitType,
        shares=payload.shares,
    )


@router.delete("/billgroup/expense/{expense_id}")
@api_limit
def remove_bill_expense(
    request: Request,
    expense_id: str,
    current_user: dict = Depends(get_current_user),
    service: BillGroupService = Depends(get_bill_groups),
):
    return service.remove_expense(current_user, expense_id)


@router.delete("/billgroup/reset")
@api_limit
def reset_bill_group(
    request: Request,
    current_user: dict = Depends(get_current_user),
    service: BillGroupService = Depends(get_bill_groups),
):
    service.reset(current_user)
    return {"message": "Bill group reset successfully"}


# ========================================
# BUDGET TRACKER ROUTES
# ========================================

@router.get("/budget")
@api_limit
def get_budget(
    request: Request,
    current_user: dict = Depends(get_current_user),
    service: BudgetService = Depends(get_budgets),
):
    return service.get(current_user)


@router.put("/budget/settings")
@api_limit
def update_budget_settings(
    request: Request,
    payload: BudgetSettingsRequest,
    current_user: dict = Depends(get_current_user),
    service: BudgetService = Depends(get_budgets),
):
    return service.update_settings(current_user, payload.totalBudget, payload.categoryBudgets)


@router.post("/budget/expense")
@api_limit
def add_budget_expense(
    request: Request,
    payload: BudgetExpenseRequest,
    current_user: dict = Depends(get_current_user),
    service: BudgetService = Depends(get_budgets),
):
    return service.add_expense(current_user, payload.category, payload.amount, payload.description)


@router.delete("/budget/expense/{expense_id}")
@api_limit
def remove_budget_expense(
    request: Request,
    expense_id: str,
    current_user: dict = Depends(get_current_user),
    service: BudgetService = Depends(get_budgets),
):
    return service.remove_expense(current_user, expense_id)


# ========================================
# ERROR HANDLERS
# ========================================

def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = []
    for error in exc.errors():
        # A malformed JSON body reports a character offset as its location
        if error.get("type") == "json_invalid":
            errors.append({"field": "body", "message": "Malformed JSON body"})
            continue
        location = [str(part) for part in error.get("loc", ()) if part != "body"]
        context = error.get("ctx") or {}
        # Field checks raise ValueError; report their message without pydantic's prefix
        message = str(context["error"]) if "error" in context else error.get("msg", "Invalid value")
        errors.append({"field": ".".join(location) or "body", "message": message})
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"message": "Validation failed", "errors": errors},
    )


def database_exception_handler(request: Request, exc: PyMongoError) -> JSONResponse:
    logger.exception(f"Database error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"message": "Database error", "error": str(exc)},
    )


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[DocumentStore] = None,
    mailer: Optional[EmailSender] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    store = store or DocumentStore.connect(settings)
    mailer = mailer or EmailSender(settings)

    try:
        store.ensure_indexes()
    except PyMongoError as e:
        # Keep serving; store calls will report the outage per request
        logger.error(f"MongoDB index creation failed: {e}")

    app = FastAPI(title="ExPeNzO API", version="1.0")

    app.state.settings = settings
    app.state.store = store
    app.state.mailer = mailer
    app.state.auth_service = AuthService(settings, store, mailer)
    app.state.marketplace = marketplace_service(store)
    app.state.jobs = job_service(store)
    app.state.bill_groups = BillGroupService(store)
    app.state.budgets = BudgetService(store)

    configure_limiter(settings)
    app.state.limiter = limiter

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(PyMongoError, database_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    @app.get("/")
    def read_root():
        return {"message": "ExPeNzO Backend API is running!"}

    app.include_router(router)
    return app


if __name__ == "__main__":
    import uvicorn

    app = create_app()
    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.port)
