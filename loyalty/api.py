from typing import Optional
from uuid import UUID
from fastapi import FastAPI, Header, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware

from .config import configure_logging, get_settings
from .models import (
    Booking, BookingStatus, BookingStatusUpdate, CreateBookingRequest,
    CreateProductRequest, CreateWithdrawalRequest, PartnerBalance, PartnerSummary,
    Product, ProgramOverview, UpdateProductRequest, UserRole, Withdrawal,
    WithdrawalStatus, WithdrawalStatusUpdate,
)
from .service import (
    LoyaltyService, LoyaltyServiceError, PermissionDeniedError,
    BookingNotFoundError, WithdrawalNotFoundError, ProductNotFoundError,
)

settings = get_settings()
configure_logging(settings)

app = FastAPI(
    title=settings.APP_NAME,
    description="Partner loyalty program: bookings earn points, points are redeemed through UPI withdrawals",
    version=settings.APP_VERSION,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

loyalty_service = LoyaltyService(settings=settings)

NOT_FOUND_ERRORS = (BookingNotFoundError, WithdrawalNotFoundError, ProductNotFoundError)


def _http_error(e: LoyaltyServiceError) -> HTTPException:
    if isinstance(e, NOT_FOUND_ERRORS):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(e, PermissionDeniedError):
        code = status.HTTP_403_FORBIDDEN
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail={"kind": e.kind, "message": str(e)})


def _is_admin(role: str) -> bool:
    return role.strip().lower() == UserRole.ADMIN.value


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "partner-rewards"}


@app.get("/products", response_model=list[Product], tags=["Products"])
def list_products(include_inactive: bool = False) -> list[Product]:
    return loyalty_service.list_products(include_inactive)


@app.post("/products", response_model=Product, status_code=status.HTTP_201_CREATED, tags=["Products"])
def add_product(
    request: CreateProductRequest,
    x_actor_role: str = Header(UserRole.OPTOMETRIST.value),
) -> Product:
    try:
        return loyalty_service.add_product(request, _is_admin(x_actor_role))
    except LoyaltyServiceError as e:
        raise _http_error(e)


@app.patch("/products/{product_id}", response_model=Product, tags=["Products"])
def update_product(
    product_id: UUID,
    request: UpdateProductRequest,
    x_actor_role: str = Header(UserRole.OPTOMETRIST.value),
) -> Product:
    try:
        return loyalty_service.update_product(product_id, request, _is_admin(x_actor_role))
    except LoyaltyServiceError as e:
        raise _http_error(e)


@app.post("/bookings", response_model=Booking, status_code=status.HTTP_201_CREATED, tags=["Bookings"])
def create_booking(request: CreateBookingRequest) -> Booking:
    try:
        return loyalty_service.bookings.create_booking(
            request.partner_id, request.product_id, request.quantity, request.bill_image_url,
        )
    except LoyaltyServiceError as e:
        raise _http_error(e)


@app.get("/bookings", response_model=list[Booking], tags=["Bookings"])
def list_bookings(
    partner_id: Optional[UUID] = None,
    booking_status: Optional[BookingStatus] = None,
) -> list[Booking]:
    return loyalty_service.bookings.list_bookings(partner_id, booking_status)


@app.get("/bookings/{booking_id}", response_model=Booking, tags=["Bookings"])
def get_booking(booking_id: UUID) -> Booking:
    try:
        return loyalty_service.bookings.get_booking(booking_id)
    except LoyaltyServiceError as e:
        raise _http_error(e)


@app.post("/bookings/{booking_id}/status", response_model=Booking, tags=["Bookings"])
def update_booking_status(
    booking_id: UUID,
    request: BookingStatusUpdate,
    x_actor_role: str = Header(UserRole.OPTOMETRIST.value),
) -> Booking:
    try:
        return loyalty_service.bookings.transition(
            booking_id, request.status, _is_admin(x_actor_role), request.performed_by,
        )
    except LoyaltyServiceError as e:
        raise _http_error(e)


@app.post("/withdrawals", response_model=Withdrawal, status_code=status.HTTP_201_CREATED, tags=["Withdrawals"])
def request_withdrawal(request: CreateWithdrawalRequest) -> Withdrawal:
    try:
        return loyalty_service.withdrawals.request_withdrawal(request.partner_id, request.upi_id)
    except LoyaltyServiceError as e:
        raise _http_error(e)


@app.get("/withdrawals", response_model=list[Withdrawal], tags=["Withdrawals"])
def list_withdrawals(
    partner_id: Optional[UUID] = None,
    withdrawal_status: Optional[WithdrawalStatus] = None,
) -> list[Withdrawal]:
    return loyalty_service.withdrawals.list_withdrawals(partner_id, withdrawal_status)


@app.get("/withdrawals/{withdrawal_id}", response_model=Withdrawal, tags=["Withdrawals"])
def get_withdrawal(withdrawal_id: UUID) -> Withdrawal:
    try:
        return loyalty_service.withdrawals.get_withdrawal(withdrawal_id)
    except LoyaltyServiceError as e:
        raise _http_error(e)


@app.post("/withdrawals/{withdrawal_id}/status", response_model=Withdrawal, tags=["Withdrawals"])
def update_withdrawal_status(
    withdrawal_id: UUID,
    request: WithdrawalStatusUpdate,
    x_actor_role: str = Header(UserRole.OPTOMETRIST.value),
) -> Withdrawal:
    try:
        return loyalty_service.withdrawals.transition(
            withdrawal_id, request.status, _is_admin(x_actor_role), request.performed_by,
        )
    except LoyaltyServiceError as e:
        raise _http_error(e)


@app.get("/partners/{partner_id}/balance", response_model=PartnerBalance, tags=["Partners"])
def get_partner_balance(partner_id: UUID) -> PartnerBalance:
    return loyalty_service.get_balance(partner_id)


@app.get("/partners/{partner_id}/summary", response_model=PartnerSummary, tags=["Partners"])
def get_partner_summary(partner_id: UUID) -> PartnerSummary:
    return loyalty_service.get_partner_summary(partner_id)


@app.get("/admin/overview", response_model=ProgramOverview, tags=["Admin"])
def get_program_overview(x_actor_role: str = Header(UserRole.OPTOMETRIST.value)) -> ProgramOverview:
    try:
        return loyalty_service.get_program_overview(_is_admin(x_actor_role))
    except LoyaltyServiceError as e:
        raise _http_error(e)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
