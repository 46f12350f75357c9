import logging
from typing import Any, Literal, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from auth import (
    SESSION_COOKIE,
    ensure_admin,
    ensure_group_access,
    issue_session_token,
    user_from_session,
)
from categories import suggest_categories
from config import Settings, get_settings
from csrf import CSRF_HEADER, SAFE_METHODS, generate_csrf_token, validate_csrf_token
from errors import (
    Forbidden,
    InternalError,
    NotFoundError,
    ServiceError,
    Unauthenticated,
    ValidationError,
)
from models import TransactionType, User
from schemas import (
    AuthOut,
    BalanceOut,
    CategorySpendingOut,
    CategorySuggestionsOut,
    GroupOut,
    MemberOut,
    MemberPermissionIn,
    MessageOut,
    PromoteIn,
    SigninIn,
    TransactionOut,
    UserOut,
    error_details,
    parse_payload,
)
from services import (
    AccountService,
    AggregationService,
    GroupService,
    TransactionService,
)
from storage import Scope, Storage, build_storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

JsonBody = dict[str, Any]


def app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_storage(request: Request) -> Storage:
    return request.app.state.storage


def current_user(
    request: Request,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(app_settings),
) -> User:
    return user_from_session(
        storage,
        settings.secret_key,
        request.cookies.get(SESSION_COOKIE),
        settings.session_max_age_hours,
    )


def session_user(
    request: Request,
    user: User = Depends(current_user),
    settings: Settings = Depends(app_settings),
) -> User:
    if settings.csrf_enabled and request.method not in SAFE_METHODS:
        token = request.headers.get(CSRF_HEADER, "")
        if not validate_csrf_token(settings.secret_key, token, user.id):
            raise Forbidden("Invalid CSRF token")
    return user


def require_admin(user: User = Depends(session_user)) -> User:
    return ensure_admin(user)


def account_service(
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(app_settings),
) -> AccountService:
    return AccountService(
        storage,
        bcrypt_rounds=settings.bcrypt_rounds,
        admin_emails=settings.admin_emails,
    )


def start_session(
    request: Request, response: Response, settings: Settings, user: User
) -> str:
    response.set_cookie(
        SESSION_COOKIE,
        issue_session_token(settings.secret_key, user.id),
        max_age=settings.session_max_age_hours * 3600,
        httponly=True,
        samesite="lax",
        secure=request.url.scheme == "https",
    )
    return generate_csrf_token(settings.secret_key, user.id)


def search_transactions(
    storage: Storage,
    scope: Scope,
    start_date: Optional[str],
    end_date: Optional[str],
    category: Optional[str],
    transaction_type: Optional[TransactionType],
    order: str,
):
    return AggregationService(storage).search(
        scope,
        start=start_date,
        end=end_date,
        category=category,
        transaction_type=transaction_type,
        newest_first=order == "desc",
    )


# auth


@router.post("/auth/signup", response_model=AuthOut, status_code=201)
def signup(
    request: Request,
    response: Response,
    payload: JsonBody = Body(...),
    accounts: AccountService = Depends(account_service),
    settings: Settings = Depends(app_settings),
):
    user = accounts.create_user(payload)
    csrf_token = start_session(request, response, settings, user)
    return AuthOut(
        message="Account created successfully",
        user=UserOut.model_validate(user),
        csrf_token=csrf_token,
    )


@router.post("/auth/signin", response_model=AuthOut)
def signin(
    request: Request,
    response: Response,
    payload: JsonBody = Body(...),
    accounts: AccountService = Depends(account_service),
    settings: Settings = Depends(app_settings),
):
    data = parse_payload(SigninIn, payload)
    user = accounts.authenticate(data.identifier, data.password)
    csrf_token = start_session(request, response, settings, user)
    return AuthOut(
        message="Signed in successfully",
        user=UserOut.model_validate(user),
        csrf_token=csrf_token,
    )


@router.post("/auth/signout", response_model=MessageOut)
def signout(response: Response, user: User = Depends(session_user)):
    response.delete_cookie(SESSION_COOKIE)
    logger.info(f"signout: user_id={user.id}")
    return MessageOut(message="Signed out")


@router.get("/auth/user", response_model=UserOut)
def read_current_user(user: User = Depends(session_user)):
    return user


@router.patch("/auth/user", response_model=UserOut)
def update_current_user(
    payload: JsonBody = Body(...),
    user: User = Depends(session_user),
    accounts: AccountService = Depends(account_service),
):
    return accounts.update_profile(user.id, payload)


@router.get("/auth/csrf")
def read_csrf_token(
    user: User = Depends(session_user), settings: Settings = Depends(app_settings)
):
    return {"csrfToken": generate_csrf_token(settings.secret_key, user.id)}


@router.get("/categories", response_model=CategorySuggestionsOut)
def category_suggestions(
    type: TransactionType = Query(TransactionType.expense),
    q: str = Query(""),
    limit: int = Query(10, ge=1, le=20),
):
    return CategorySuggestionsOut(
        type=type, suggestions=suggest_categories(type, q, limit)
    )


# personal transactions


@router.get("/transactions", response_model=list[TransactionOut])
def list_transactions(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    category: Optional[str] = Query(None),
    type: Optional[TransactionType] = Query(None),
    order: Literal["asc", "desc"] = Query("asc"),
    user: User = Depends(session_user),
    storage: Storage = Depends(get_storage),
):
    return search_transactions(
        storage, Scope.user(user.id), start_date, end_date, category, type, order
    )


@router.get("/transactions/range", response_model=list[TransactionOut])
def transactions_by_date_range(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    user: User = Depends(session_user),
    storage: Storage = Depends(get_storage),
):
    if not start_date or not end_date:
        raise ValidationError("Start date and end date are required")
    return AggregationService(storage).filter_by_date_range(
        Scope.user(user.id), start_date, end_date
    )


@router.get("/transactions/{transaction_id}", response_model=TransactionOut)
def read_transaction(
    transaction_id: int,
    user: User = Depends(session_user),
    storage: Storage = Depends(get_storage),
):
    return TransactionService(storage).get_for(user, transaction_id)


@router.post("/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(
    payload: JsonBody = Body(...),
    user: User = Depends(session_user),
    storage: Storage = Depends(get_storage),
):
    return TransactionService(storage).create(user.id, payload)


@router.delete("/transactions/{transaction_id}", response_model=MessageOut)
def delete_transaction(
    transaction_id: int,
    user: User = Depends(session_user),
    storage: Storage = Depends(get_storage),
):
    if not TransactionService(storage).delete_for(user, transaction_id):
        raise NotFoundError("Transaction not found")
    return MessageOut(message="Transaction deleted successfully")


@router.get("/balance", response_model=BalanceOut)
def read_balance(
    user: User = Depends(session_user), storage: Storage = Depends(get_storage)
):
    return AggregationService(storage).compute_balance(Scope.user(user.id))


@router.get("/category-spending", response_model=list[CategorySpendingOut])
def read_category_spending(
    user: User = Depends(session_user), storage: Storage = Depends(get_storage)
):
    return AggregationService(storage).compute_category_spending(Scope.user(user.id))


# groups (members)


@router.get("/groups", response_model=list[GroupOut])
def list_my_groups(
    user: User = Depends(session_user), storage: Storage = Depends(get_storage)
):
    return GroupService(storage).list_groups_for_user(user.id)


@router.get("/groups/{group_id}/transactions", response_model=list[TransactionOut])
def list_group_transactions(
    group_id: int,
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    category: Optional[str] = Query(None),
    type: Optional[TransactionType] = Query(None),
    order: Literal["asc", "desc"] = Query("asc"),
    user: User = Depends(session_user),
    storage: Storage = Depends(get_storage),
):
    ensure_group_access(storage, user, group_id)
    return search_transactions(
        storage, Scope.group(group_id), start_date, end_date, category, type, order
    )


@router.post(
    "/groups/{group_id}/transactions", response_model=TransactionOut, status_code=201
)
def create_group_transaction(
    group_id: int,
    payload: JsonBody = Body(...),
    user: User = Depends(session_user),
    storage: Storage = Depends(get_storage),
):
    ensure_group_access(storage, user, group_id, write=True)
    return TransactionService(storage).create(user.id, payload, group_id=group_id)


@router.get("/groups/{group_id}/balance", response_model=BalanceOut)
def read_group_balance(
    group_id: int,
    user: User = Depends(session_user),
    storage: Storage = Depends(get_storage),
):
    ensure_group_access(storage, user, group_id)
    return AggregationService(storage).compute_balance(Scope.group(group_id))


@router.get(
    "/groups/{group_id}/category-spending", response_model=list[CategorySpendingOut]
)
def read_group_category_spending(
    group_id: int,
    user: User = Depends(session_user),
    storage: Storage = Depends(get_storage),
):
    ensure_group_access(storage, user, group_id)
    return AggregationService(storage).compute_category_spending(Scope.group(group_id))


# admin


@router.post("/admin/groups", response_model=GroupOut, status_code=201)
def create_group(
    payload: JsonBody = Body(...),
    admin: User = Depends(require_admin),
    storage: Storage = Depends(get_storage),
):
    return GroupService(storage).create_group(admin, payload)


@router.get("/admin/groups", response_model=list[GroupOut])
def list_admin_groups(
    admin: User = Depends(require_admin), storage: Storage = Depends(get_storage)
):
    return GroupService(storage).list_groups_by_admin(admin.id)


@router.get("/admin/groups/{group_id}/members", response_model=list[MemberOut])
def list_group_members(
    group_id: int,
    admin: User = Depends(require_admin),
    storage: Storage = Depends(get_storage),
):
    return GroupService(storage).list_members(admin, group_id)


@router.post(
    "/admin/groups/{group_id}/members", response_model=MemberOut, status_code=201
)
def add_group_member(
    group_id: int,
    payload: JsonBody = Body(...),
    admin: User = Depends(require_admin),
    storage: Storage = Depends(get_storage),
):
    return GroupService(storage).add_member(admin, group_id, payload)


@router.patch("/admin/groups/{group_id}/members/{user_id}", response_model=MemberOut)
def update_group_member(
    group_id: int,
    user_id: int,
    payload: JsonBody = Body(...),
    admin: User = Depends(require_admin),
    storage: Storage = Depends(get_storage),
):
    data = parse_payload(MemberPermissionIn, payload)
    return GroupService(storage).set_member_permission(
        admin, group_id, user_id, data.can_add_expense
    )


@router.delete(
    "/admin/groups/{group_id}/members/{user_id}", response_model=MessageOut
)
def remove_group_member(
    group_id: int,
    user_id: int,
    admin: User = Depends(require_admin),
    storage: Storage = Depends(get_storage),
):
    GroupService(storage).remove_member(admin, group_id, user_id)
    return MessageOut(message="User removed from group")


@router.post("/admin/users/promote", response_model=UserOut)
def promote_user(
    payload: JsonBody = Body(...),
    admin: User = Depends(require_admin),
    accounts: AccountService = Depends(account_service),
):
    data = parse_payload(PromoteIn, payload)
    return accounts.promote_to_admin(admin, data.email)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        headers = None
        if isinstance(exc, Unauthenticated):
            headers = {"WWW-Authenticate": "Session"}
        if isinstance(exc, InternalError):
            logger.error(f"internal_error: path={request.url.path} detail={exc}")
            exc = InternalError()
        return JSONResponse(
            status_code=exc.status_code, content=exc.payload(), headers=headers
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        error = ValidationError("Invalid input", errors=error_details(exc.errors()))
        return JSONResponse(status_code=error.status_code, content=error.payload())

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        error = InternalError()
        return JSONResponse(status_code=error.status_code, content=error.payload())


def create_app(
    settings: Optional[Settings] = None, storage: Optional[Storage] = None
) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level)

    app = FastAPI(title="Group Expenses")
    app.state.settings = settings
    app.state.storage = storage or build_storage(settings)

    @app.on_event("startup")
    def startup_event():
        app.state.storage.prepare()
        logger.info(
            f"startup: storage={type(app.state.storage).__name__} "
            f"csrf_enabled={settings.csrf_enabled}"
        )

    register_exception_handlers(app)
    app.include_router(router)
    return app


app = create_app()


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
