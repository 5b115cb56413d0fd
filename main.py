import logging
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from pymongo.database import Database
from pymongo.errors import PyMongoError
from starlette.concurrency import run_in_threadpool

import accounts
import catalog
import orders
from config import Settings
from database import connect, ensure_indexes, serialize_doc
from errors import InternalError, StorefrontError, UpstreamError, Unauthorized
from federated import GoogleProvider
from notifications import Mailer
from payments import PaymentBridge
from schemas import (
    LoginBody,
    OrderCreateBody,
    PaymentIntentBody,
    ProductCreateBody,
    ProductUpdateBody,
    RegisterBody,
    ReviewBody,
)
from security import create_token, get_current_user, require_admin

logger = logging.getLogger(__name__)

MAX_PAGE = 100_000


def ok(message: str, data=None, **extra) -> dict:
    return {"status": True, "message": message, "data": data, **extra}


def fail(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"status": False, "message": message, "data": None})


# ----------------------- Dependencies -----------------------
def get_db(request: Request) -> Database:
    return request.app.state.db


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_mailer(request: Request) -> Mailer:
    return request.app.state.mailer


def get_payments(request: Request) -> PaymentBridge:
    return request.app.state.payments


def get_google(request: Request) -> GoogleProvider:
    return request.app.state.google


def create_app(
    settings: Settings,
    db: Optional[Database] = None,
    mailer: Optional[Mailer] = None,
    payments: Optional[PaymentBridge] = None,
    google: Optional[GoogleProvider] = None,
) -> FastAPI:
    app = FastAPI(title="Storefront API")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if db is None:
        db = connect(settings)
        ensure_indexes(db)
    app.state.settings = settings
    app.state.db = db
    app.state.mailer = mailer or Mailer(settings)
    app.state.payments = payments or PaymentBridge(db, settings, app.state.mailer)
    app.state.google = google or GoogleProvider(settings)

    @app.exception_handler(StorefrontError)
    async def storefront_error(request: Request, exc: StorefrontError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return fail(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{where}: {first.get('msg')}" if where else first.get("msg", "Invalid request")
        return fail(400, message)

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return fail(InternalError.status_code, "Internal server error")

    register_routes(app)
    return app


def register_routes(app: FastAPI) -> None:
    # ----------------------- Health -----------------------
    @app.get("/")
    def root():
        return {"message": "Storefront API running"}

    @app.get("/health")
    def health(db: Database = Depends(get_db)):
        try:
            db.command("ping")
        except PyMongoError as e:
            logger.warning("Database ping failed: %s", e)
            return fail(503, "Database unavailable")
        return ok("ok", {"database": db.name})

    # ----------------------- Auth -----------------------
    @app.post("/auth/register", status_code=201)
    def register(body: RegisterBody, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
        return ok("User registered successfully", accounts.register(db, body, settings))

    @app.post("/auth/login")
    def login(body: LoginBody, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
        return ok("User logged in successfully", accounts.login(db, body, settings))

    @app.get("/auth/google")
    def google_login(google: GoogleProvider = Depends(get_google)):
        return RedirectResponse(google.authorization_url())

    @app.get("/auth/google/callback")
    def google_callback(
        code: str,
        db: Database = Depends(get_db),
        settings: Settings = Depends(get_settings),
        google: GoogleProvider = Depends(get_google),
    ):
        try:
            profile = google.exchange_code(code)
        except (Unauthorized, UpstreamError) as e:
            logger.warning("Google sign-in failed: %s", e.message)
            return RedirectResponse(f"{settings.frontend_url}/login?error=GoogleAuthFailed")
        user = accounts.upsert_federated_user(db, profile["google_id"], profile["email"], profile["name"])
        token = create_token(user["id"], settings)
        return RedirectResponse(f"{settings.frontend_url}/login-success?token={token}")

    # ----------------------- Products -----------------------
    @app.get("/products")
    def list_products(
        keyword: Optional[str] = None,
        page: int = Query(1, ge=1, le=MAX_PAGE),
        db: Database = Depends(get_db),
        settings: Settings = Depends(get_settings),
    ):
        result = catalog.list_products(db, keyword, page, settings.page_size)
        return ok(
            "Products fetched successfully",
            result["products"],
            count=len(result["products"]),
            pagination=result["pagination"],
        )

    @app.get("/products/{product_id}")
    def get_product(product_id: str, db: Database = Depends(get_db)):
        return ok("Product fetched successfully", serialize_doc(catalog.get_product_or_404(db, product_id)))

    @app.post("/products", status_code=201)
    def create_product(body: ProductCreateBody, user=Depends(get_current_user), db: Database = Depends(get_db)):
        return ok("Product created successfully", catalog.create_product(db, body, user["id"]))

    @app.put("/products/{product_id}")
    def update_product(
        product_id: str, body: ProductUpdateBody, user=Depends(get_current_user), db: Database = Depends(get_db)
    ):
        return ok("Product updated successfully", catalog.update_product(db, product_id, body, user))

    @app.delete("/products/{product_id}")
    def delete_product(product_id: str, user=Depends(require_admin), db: Database = Depends(get_db)):
        return ok("Product deleted successfully", catalog.delete_product(db, product_id))

    @app.post("/products/{product_id}/reviews", status_code=201)
    def create_review(product_id: str, body: ReviewBody, user=Depends(get_current_user), db: Database = Depends(get_db)):
        return ok("Review added", catalog.add_review(db, product_id, body, user))

    # ----------------------- Orders -----------------------
    @app.post("/orders", status_code=201)
    def create_order(
        body: OrderCreateBody,
        user=Depends(get_current_user),
        db: Database = Depends(get_db),
        mailer: Mailer = Depends(get_mailer),
    ):
        return ok("Order created successfully", orders.place_order(db, body, user, mailer))

    @app.get("/orders/myOrders")
    def my_orders(user=Depends(get_current_user), db: Database = Depends(get_db)):
        return ok("User orders fetched successfully", orders.list_my_orders(db, user))

    @app.get("/orders/{order_id}")
    def get_order(order_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
        return ok("Order fetched successfully", orders.get_order(db, order_id, user))

    @app.get("/orders")
    def all_orders(user=Depends(require_admin), db: Database = Depends(get_db)):
        return ok("All orders fetched successfully", orders.list_orders(db))

    @app.put("/orders/{order_id}/deliver")
    def deliver_order(order_id: str, user=Depends(require_admin), db: Database = Depends(get_db)):
        return ok("Order delivered successfully", orders.mark_delivered(db, order_id))

    # ----------------------- Payment -----------------------
    @app.get("/payment/config")
    def payment_config(payments: PaymentBridge = Depends(get_payments)):
        return ok("Payment config fetched successfully", payments.config())

    @app.post("/payment/create-payment-intent")
    def create_payment_intent(
        body: PaymentIntentBody, user=Depends(get_current_user), payments: PaymentBridge = Depends(get_payments)
    ):
        return ok("Payment intent created", payments.create_intent(body.order_id, body.currency, user))

    @app.post("/payment/webhook")
    async def payment_webhook(request: Request, payments: PaymentBridge = Depends(get_payments)):
        # signature covers the exact bytes, so the body is never parsed first
        payload = await request.body()
        signature = request.headers.get("stripe-signature")
        await run_in_threadpool(payments.handle_webhook, payload, signature)
        return {"received": True}


def app_from_env() -> FastAPI:
    """Factory for `uvicorn main:app_from_env --factory`."""
    return create_app(Settings.from_env())


if __name__ == "__main__":
    import uvicorn

    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)
