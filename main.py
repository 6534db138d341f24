# main.py
import asyncio
import logging
import os
import shutil
from datetime import datetime, timedelta, timezone
from typing import List, Optional
from uuid import uuid4

from fastapi import Depends, FastAPI, File, Request, UploadFile, WebSocket, WebSocketDisconnect, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy import func, or_, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import models, schemas
from auth import (
    AuthClient,
    AuthError,
    ensure_profile,
    get_auth_client,
    get_bearer_token,
    get_current_user,
    get_optional_user,
)
from config import TAX_RATE, Config
from database import Base, engine, get_change_feed, get_db
from errors import ApiError
from realtime import ChangeFeed

logging.basicConfig(level=Config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

# --------------------------- setup ---------------------------
Base.metadata.create_all(bind=engine)
app = FastAPI(title="POS Admin API", version="1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# uploaded product images
os.makedirs(Config.UPLOAD_DIR, exist_ok=True)
app.mount("/static/images", StaticFiles(directory=Config.UPLOAD_DIR), name="images")
IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp"}


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()), headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={"error": "Invalid request body", "details": jsonable_encoder(exc.errors())},
    )


# --------------------------- utils ---------------------------
def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def store_failure(db: Session, message: str, exc: Exception) -> ApiError:
    db.rollback()
    logger.error("%s: %s", message, exc)
    return ApiError(status.HTTP_500_INTERNAL_SERVER_ERROR, message, str(exc))


def apply_updates(record, updates: dict):
    for field, value in updates.items():
        setattr(record, field, value)
    record.updated_at = utc_now()


@app.get("/")
def read_root(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        db_status = "ok"
    except SQLAlchemyError as e:
        db_status = f"error: {str(e)[:80]}"
    return {"message": "POS admin API running", "db": db_status}


# --------------------------- products ---------------------------
@app.get("/products", response_model=List[schemas.ProductResponse])
def get_products(search: Optional[str] = None, db: Session = Depends(get_db)):
    try:
        q = db.query(models.Product)
        if search:
            term = f"%{search}%"
            q = q.filter(
                or_(
                    models.Product.name.ilike(term),
                    models.Product.category.ilike(term),
                    models.Product.barcode.ilike(term),
                )
            )
        return q.order_by(models.Product.name).all()
    except SQLAlchemyError as e:
        raise store_failure(db, "Failed to fetch products", e)


@app.get("/products/{product_id}", response_model=schemas.ProductResponse)
def get_product(product_id: str, db: Session = Depends(get_db)):
    try:
        product = db.get(models.Product, product_id)
    except SQLAlchemyError as e:
        raise store_failure(db, "Failed to fetch product", e)
    if not product:
        raise ApiError(status.HTTP_404_NOT_FOUND, "Product not found")
    return product


@app.post("/products", response_model=schemas.ProductResponse)
def create_product(product: schemas.ProductCreate, db: Session = Depends(get_db)):
    logger.info("Creating product: %s", product.name)
    try:
        new_product = models.Product(**product.model_dump())
        db.add(new_product)
        db.commit()
        db.refresh(new_product)
    except SQLAlchemyError as e:
        raise store_failure(db, "Failed to create product", e)
    logger.info("Product created: %s", new_product.id)
    return new_product


@app.patch("/products/{product_id}", response_model=schemas.ProductResponse)
def update_product(product_id: str, body: schemas.ProductUpdate, db: Session = Depends(get_db)):
    updates = body.model_dump(exclude_unset=True)
    logger.info("Updating product %s: %s", product_id, sorted(updates))
    try:
        product = db.get(models.Product, product_id)
        if not product:
            raise ApiError(status.HTTP_404_NOT_FOUND, "Product not found")
        apply_updates(product, updates)
        db.commit()
        db.refresh(product)
    except SQLAlchemyError as e:
        raise store_failure(db, "Failed to update product", e)
    return product


@app.delete("/products/{product_id}")
def delete_product(product_id: str, db: Session = Depends(get_db)):
    logger.info("Deleting product: %s", product_id)
    try:
        product = db.get(models.Product, product_id)
        if not product:
            raise ApiError(status.HTTP_404_NOT_FOUND, "Product not found")
        db.delete(product)
        db.commit()
    except SQLAlchemyError as e:
        raise store_failure(db, "Failed to delete product", e)
    return {"success": True}


@app.post("/products/{product_id}/image", response_model=schemas.ProductResponse)
def upload_product_image(product_id: str, image: UploadFile = File(...), db: Session = Depends(get_db)):
    ext = os.path.splitext(image.filename or "")[1].lower()
    if ext not in IMAGE_EXTENSIONS:
        raise ApiError(status.HTTP_400_BAD_REQUEST, "Only image files can be uploaded", ext or None)

    try:
        product = db.get(models.Product, product_id)
        if not product:
            raise ApiError(status.HTTP_404_NOT_FOUND, "Product not found")

        file_name = f"{uuid4().hex}{ext}"
        with open(os.path.join(Config.UPLOAD_DIR, file_name), "wb") as buffer:
            shutil.copyfileobj(image.file, buffer)

        apply_updates(product, {"image_url": f"{Config.PUBLIC_BASE_URL}/static/images/{file_name}"})
        db.commit()
        db.refresh(product)
    except SQLAlchemyError as e:
        raise store_failure(db, "Failed to update product", e)
    return product


# --------------------------- customers ---------------------------
@app.get("/customers", response_model=List[schemas.CustomerResponse])
def get_customers(search: Optional[str] = None, db: Session = Depends(get_db)):
    try:
        q = db.query(models.Customer)
        if search:
            term = f"%{search}%"
            q = q.filter(
                or_(
                    models.Customer.name.ilike(term),
                    models.Customer.email.ilike(term),
                    models.Customer.phone.ilike(term),
                )
            )
        return q.order_by(models.Customer.name).all()
    except SQLAlchemyError as e:
        raise store_failure(db, "Failed to fetch customers", e)


@app.get("/customers/{customer_id}", response_model=schemas.CustomerResponse)
def get_customer(customer_id: str, db: Session = Depends(get_db)):
    try:
        customer = db.get(models.Customer, customer_id)
    except SQLAlchemyError as e:
        raise store_failure(db, "Failed to fetch customer", e)
    if not customer:
        raise ApiError(status.HTTP_404_NOT_FOUND, "Customer not found")
    return customer


@app.post("/customers", response_model=schemas.CustomerResponse)
def create_customer(customer: schemas.CustomerCreate, db: Session = Depends(get_db)):
    logger.info("Creating customer: %s", customer.name)
    try:
        new_customer = models.Customer(
            **customer.model_dump(),
            total_orders=0,
            total_spent=0,
            status="active",
        )
        db.add(new_customer)
        db.commit()
        db.refresh(new_customer)
    except SQLAlchemyError as e:
        raise store_failure(db, "Failed to create customer", e)
    return new_customer


@app.patch("/customers/{customer_id}", response_model=schemas.CustomerResponse)
def update_customer(customer_id: str, body: schemas.CustomerUpdate, db: Session = Depends(get_db)):
    updates = body.model_dump(exclude_unset=True)
    logger.info("Updating customer %s: %s", customer_id, sorted(updates))
    try:
        customer = db.get(models.Customer, customer_id)
        if not customer:
            raise ApiError(status.HTTP_404_NOT_FOUND, "Customer not found")
        apply_updates(customer, updates)
        db.commit()
        db.refresh(customer)
    except SQLAlchemyError as e:
        raise store_failure(db, "Failed to update customer", e)
    return customer


@app.delete("/customers/{customer_id}")
def delete_customer(customer_id: str, db: Session = Depends(get_db)):
    logger.info("Deleting customer: %s", customer_id)
    try:
        customer = db.get(models.Customer, customer_id)
        if not customer:
            raise ApiError(status.HTTP_404_NOT_FOUND, "Customer not found")
        db.delete(customer)
        db.commit()
    except SQLAlchemyError as e:
        raise store_failure(db, "Failed to delete customer", e)
    return {"success": True}


# --------------------------- orders ---------------------------
def place_order(db: Session, order: schemas.OrderCreate, created_by: Optional[str] = None) -> str:
    """
    Record a sale from a cart in three separately committed steps:
      1. the order row, with tax at TAX_RATE of the total
      2. one order item per cart line (total_price = unit_price * quantity)
      3. each product's stock set to the cart's stock minus the quantity

    Nothing is rolled back when a later step fails, and the new stock is
    computed from the stock the client read, so two concurrent sales of the
    same product can overwrite each other's decrement.
    """
    new_order = models.Order(
        customer_id=order.customer_id,
        total_amount=order.total,
        tax_amount=round(order.total * TAX_RATE, 2),
        payment_method=order.payment_method,
        payment_status="completed",
        created_by=created_by,
    )
    db.add(new_order)
    db.commit()
    order_id = new_order.id

    for line in order.cart:
        db.add(
            models.OrderItem(
                order_id=order_id,
                product_id=line.id,
                quantity=line.quantity,
                unit_price=line.price,
                total_price=round(line.price * line.quantity, 2),
            )
        )
    db.commit()

    for line in order.cart:
        product = db.get(models.Product, line.id)
        apply_updates(product, {"stock": line.stock - line.quantity})
        db.commit()

    return order_id


@app.post("/orders", response_model=schemas.OrderCreated)
def create_order(
    order: schemas.OrderCreate,
    db: Session = Depends(get_db),
    user: Optional[dict] = Depends(get_optional_user),
):
    logger.info("Creating order: %d line(s), total %.2f, %s", len(order.cart), order.total, order.payment_method)
    try:
        created_by = ensure_profile(db, user).id if user else None
        order_id = place_order(db, order, created_by)
    except SQLAlchemyError as e:
        raise store_failure(db, "Failed to create order", e)
    logger.info("Order created: %s", order_id)
    return {"success": True, "orderId": order_id}


@app.get("/orders", response_model=List[schemas.OrderResponse])
def get_orders(search: Optional[str] = None, db: Session = Depends(get_db)):
    try:
        q = db.query(models.Order)
        if search:
            term = f"%{search}%"
            q = (
                q.outerjoin(models.Customer, models.Order.customer_id == models.Customer.id)
                .outerjoin(models.UserProfile, models.Order.created_by == models.UserProfile.id)
                .filter(
                    or_(
                        models.Order.id.ilike(term),
                        models.Order.payment_method.ilike(term),
                        models.Customer.name.ilike(term),
                        models.UserProfile.full_name.ilike(term),
                    )
                )
            )
        return q.order_by(models.Order.created_at.desc()).all()
    except SQLAlchemyError as e:
        raise store_failure(db, "Failed to fetch orders", e)


@app.get("/orders/{order_id}", response_model=schemas.OrderResponse)
def get_order(order_id: str, db: Session = Depends(get_db)):
    try:
        order = db.get(models.Order, order_id)
    except SQLAlchemyError as e:
        raise store_failure(db, "Failed to fetch order", e)
    if not order:
        raise ApiError(status.HTTP_404_NOT_FOUND, "Order not found")
    return order


# --------------------------- user profiles ---------------------------
@app.get("/users", response_model=List[schemas.UserProfileResponse])
def get_user_profiles(search: Optional[str] = None, db: Session = Depends(get_db)):
    try:
        q = db.query(models.UserProfile)
        if search:
            term = f"%{search}%"
            q = q.filter(or_(models.UserProfile.full_name.ilike(term), models.UserProfile.role.ilike(term)))
        return q.order_by(models.UserProfile.full_name).all()
    except SQLAlchemyError as e:
        raise store_failure(db, "Failed to fetch user profiles", e)


# profiles are created by the signup flow, and removed with the auth identity
@app.post("/users")
def create_user_profile():
    raise ApiError(status.HTTP_405_METHOD_NOT_ALLOWED, "User creation not supported via this endpoint. Use signup flow.")


@app.delete("/users")
def delete_user_profiles():
    raise ApiError(status.HTTP_405_METHOD_NOT_ALLOWED, "User deletion not supported via this endpoint.")


@app.get("/users/{user_id}", response_model=Optional[schemas.UserProfileResponse])
def get_user_profile(user_id: str, db: Session = Depends(get_db)):
    try:
        # an unknown id is an empty result, not an error
        return db.get(models.UserProfile, user_id)
    except SQLAlchemyError as e:
        raise store_failure(db, "Failed to fetch user profile", e)


@app.patch("/users/{user_id}", response_model=schemas.UserProfileResponse)
def update_user_profile(user_id: str, body: schemas.UserProfileUpdate, db: Session = Depends(get_db)):
    updates = body.model_dump(exclude_unset=True)
    logger.info("Updating user profile %s: %s", user_id, sorted(updates))
    try:
        profile = db.get(models.UserProfile, user_id)
        if not profile:
            raise ApiError(status.HTTP_404_NOT_FOUND, "User profile not found")
        apply_updates(profile, updates)
        db.commit()
        db.refresh(profile)
    except SQLAlchemyError as e:
        raise store_failure(db, "Failed to update user profile", e)
    return profile


@app.delete("/users/{user_id}")
def delete_user_profile(user_id: str):
    raise ApiError(status.HTTP_405_METHOD_NOT_ALLOWED, "User deletion not supported via this endpoint.")


# --------------------------- payment ---------------------------
@app.post("/payment/simulate", response_model=schemas.PaymentResponse)
async def simulate_payment(payment: schemas.PaymentRequest):
    """Stand-in for a card gateway: waits, then reports a captured transaction."""
    try:
        now = utc_now()
        transaction = schemas.PaymentTransaction(
            transaction_id=f"TXN_{int(now.timestamp() * 1000)}",
            order_id=payment.order_id,
            gross_amount=payment.amount,
            transaction_time=now,
        )
        await asyncio.sleep(Config.PAYMENT_DELAY_SECONDS)
    except Exception as e:
        logger.exception("Payment processing error")
        raise ApiError(status.HTTP_500_INTERNAL_SERVER_ERROR, "Payment processing failed", str(e))
    return {"success": True, "data": transaction}


# --------------------------- dashboard ---------------------------
@app.get("/dashboard/stats", response_model=schemas.DashboardStats)
def dashboard_stats(db: Session = Depends(get_db)):
    start = utc_now().replace(hour=0, minute=0, second=0, microsecond=0)
    end = start + timedelta(days=1)
    try:
        today_sales, today_orders = (
            db.query(func.coalesce(func.sum(models.Order.total_amount), 0), func.count(models.Order.id))
            .filter(models.Order.created_at >= start, models.Order.created_at < end)
            .one()
        )
        total_products = db.query(func.count(models.Product.id)).scalar() or 0
        low_stock = (
            db.query(func.count(models.Product.id))
            .filter(models.Product.stock <= Config.LOW_STOCK_THRESHOLD)
            .scalar()
            or 0
        )
        total_users = db.query(func.count(models.UserProfile.id)).scalar() or 0
    except SQLAlchemyError as e:
        raise store_failure(db, "Failed to fetch stats", e)

    return schemas.DashboardStats(
        today_sales=round(float(today_sales), 2),
        today_orders=today_orders,
        total_products=total_products,
        low_stock_products=low_stock,
        total_users=total_users,
    )


# --------------------------- realtime ---------------------------
async def wait_for_disconnect(websocket: WebSocket):
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


@app.websocket("/realtime/{table}")
async def realtime_changes(websocket: WebSocket, table: str, feed: ChangeFeed = Depends(get_change_feed)):
    """
    Stream committed changes to `table` ("*" for every table) as
    {"table", "type", "record"} JSON messages until the client disconnects.
    """
    loop = asyncio.get_running_loop()
    changes: asyncio.Queue = asyncio.Queue()
    # commits happen on worker threads, so hand events over to this loop
    subscription = feed.watch(table, lambda change: loop.call_soon_threadsafe(changes.put_nowait, change))
    await websocket.accept()
    logger.info("Realtime subscriber joined %s", table)

    disconnected = asyncio.ensure_future(wait_for_disconnect(websocket))
    try:
        while True:
            next_change = asyncio.ensure_future(changes.get())
            done, _ = await asyncio.wait({next_change, disconnected}, return_when=asyncio.FIRST_COMPLETED)
            if disconnected in done:
                next_change.cancel()
                break
            await websocket.send_json(jsonable_encoder(next_change.result()))
    except WebSocketDisconnect:
        pass
    finally:
        subscription.unsubscribe()
        disconnected.cancel()
        logger.info("Realtime subscriber left %s", table)


# --------------------------- auth ---------------------------
def auth_failure(message: str, exc: AuthError) -> ApiError:
    logger.warning("%s: %s", message, exc.message)
    code = exc.status_code if 400 <= exc.status_code < 600 else status.HTTP_400_BAD_REQUEST
    return ApiError(code, message, exc.message)


def profile_for_session(db: Session, session: dict):
    user = session.get("user") or {}
    if not user.get("id"):
        return None
    claims = {"sub": user["id"], "email": user.get("email"), "user_metadata": user.get("user_metadata")}
    try:
        return ensure_profile(db, claims)
    except SQLAlchemyError as e:
        raise store_failure(db, "Failed to load user profile", e)


@app.post("/auth/login")
def login(body: schemas.LoginRequest, db: Session = Depends(get_db), auth_client: AuthClient = Depends(get_auth_client)):
    try:
        session = auth_client.sign_in_with_password(body.email, body.password)
    except AuthError as e:
        raise auth_failure("Login failed", e)
    profile_for_session(db, session)
    return session


@app.post("/auth/otp")
def send_login_otp(body: schemas.OtpLoginRequest, auth_client: AuthClient = Depends(get_auth_client)):
    try:
        # only existing users may sign in with a code
        auth_client.sign_in_with_otp(body.email, create_user=False)
    except AuthError as e:
        raise auth_failure("Failed to send verification code", e)
    return {"success": True}


@app.post("/auth/signup")
def signup(body: schemas.SignupRequest, auth_client: AuthClient = Depends(get_auth_client)):
    try:
        auth_client.sign_in_with_otp(body.email, create_user=True, data={"full_name": body.full_name})
    except AuthError as e:
        reason = e.message.lower()
        if "already registered" in reason or "already exists" in reason or "duplicate key" in reason:
            raise ApiError(
                status.HTTP_409_CONFLICT,
                "This email is already registered. Please try logging in instead.",
                e.message,
            )
        raise auth_failure("Signup failed", e)
    return {"success": True}


@app.post("/auth/verify")
def verify_otp(body: schemas.OtpVerifyRequest, db: Session = Depends(get_db), auth_client: AuthClient = Depends(get_auth_client)):
    try:
        session = auth_client.verify_otp(body.email, body.otp)
    except AuthError as e:
        raise auth_failure("Verification failed", e)
    profile_for_session(db, session)
    return session


@app.post("/auth/logout")
def logout(token: str = Depends(get_bearer_token), auth_client: AuthClient = Depends(get_auth_client)):
    try:
        auth_client.sign_out(token)
    except AuthError as e:
        raise auth_failure("Sign out failed", e)
    return {"success": True}


@app.get("/auth/session", response_model=schemas.SessionResponse)
def get_session(claims: dict = Depends(get_current_user), db: Session = Depends(get_db)):
    try:
        profile = ensure_profile(db, claims)
    except SQLAlchemyError as e:
        raise store_failure(db, "Failed to load user profile", e)
    return {"user": claims, "profile": profile}


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
