"""
Order placement and the order ledger

validate_cart prices a cart against the catalog without writing anything.
place_order persists the order, then commits the staged stock decrements in
one bulk write, undoing both if stock no longer covers the cart.
"""
import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional

from bson.objectid import ObjectId
from pymongo.database import Database
from pymongo.errors import PyMongoError

import catalog
from database import create_document, now, object_id, serialize_doc
from errors import Conflict, EmptyCart, Forbidden, InsufficientStock, InternalError, NotFound, OutOfStock, ProductNotFound
from notifications import Mailer, order_confirmation
from schemas import CartLine, Order, OrderCreateBody, OrderItem
from security import is_owner_or_admin

logger = logging.getLogger(__name__)

TAX_RATE = Decimal("0.10")
FREE_SHIPPING_OVER = Decimal("100")
FLAT_SHIPPING = Decimal("10")
CENT = Decimal("0.01")


@dataclass
class PricedCart:
    items: List[OrderItem]
    items_price: Decimal
    tax_price: Decimal
    shipping_price: Decimal
    total_price: Decimal
    # product id -> units to take from stock
    decrements: Dict[ObjectId, int] = field(default_factory=dict)


def price_of(items_price: Decimal):
    """Return (tax, shipping, total) for an items subtotal."""
    tax = (items_price * TAX_RATE).quantize(CENT, rounding=ROUND_HALF_UP)
    shipping = Decimal("0") if items_price > FREE_SHIPPING_OVER else FLAT_SHIPPING
    return tax, shipping, items_price + tax + shipping


def validate_cart(db: Database, lines: List[CartLine]) -> PricedCart:
    if not lines:
        raise EmptyCart()

    wanted = []
    for line in lines:
        try:
            wanted.append(object_id(line.product, "Product"))
        except NotFound:
            raise ProductNotFound(line.product)
    products = catalog.find_products(db, wanted)

    items: List[OrderItem] = []
    decrements: Dict[ObjectId, int] = {}
    items_price = Decimal("0")
    for line, pid in zip(lines, wanted):
        product = products.get(pid)
        if product is None:
            raise ProductNotFound(line.product)
        requested = decrements.get(pid, 0) + line.quantity
        if requested > product.get("stock", 0):
            raise InsufficientStock(product["name"])

        unit_price = Decimal(str(product["price"]))
        items_price += unit_price * line.quantity
        items.append(OrderItem(
            product=pid,
            name=product["name"],
            quantity=line.quantity,
            price=float(unit_price),
            image=product.get("image"),
        ))
        decrements[pid] = requested

    tax, shipping, total = price_of(items_price)
    return PricedCart(
        items=items,
        items_price=items_price,
        tax_price=tax,
        shipping_price=shipping,
        total_price=total,
        decrements=decrements,
    )


def place_order(db: Database, body: OrderCreateBody, actor: dict, mailer: Optional[Mailer] = None) -> dict:
    cart = validate_cart(db, body.order_items)
    order = Order(
        user=object_id(actor["id"], "User"),
        order_items=cart.items,
        shipping_address=body.shipping_address,
        payment_method=body.payment_method,
        items_price=float(cart.items_price),
        tax_price=float(cart.tax_price),
        shipping_price=float(cart.shipping_price),
        total_price=float(cart.total_price),
    )
    order_id = ObjectId(create_document(db, "order", order))

    try:
        committed = catalog.decrement_stock(db, cart.decrements, hold=order_id)
    except PyMongoError:
        logger.exception("Stock commit failed for order %s", order_id)
        committed = False
    if not committed:
        _roll_back(db, order_id, cart.decrements)
        raise OutOfStock("Stock changed while placing the order, please try again")
    catalog.release_holds(db, cart.decrements.keys(), order_id)

    created = db["order"].find_one({"_id": order_id})
    logger.info("Order %s placed by %s, total %s", order_id, actor["id"], cart.total_price)
    if mailer is not None:
        mailer.send(actor["email"], **order_confirmation(created, actor.get("username", "")))
    return serialize_doc(created)


def _roll_back(db: Database, order_id: ObjectId, decrements: Dict[ObjectId, int]) -> None:
    try:
        catalog.restore_stock(db, decrements, hold=order_id)
        db["order"].delete_one({"_id": order_id})
    except PyMongoError:
        logger.exception("Rollback of order %s failed, stock needs reconciliation", order_id)
        raise InternalError("Order could not be placed")
    logger.warning("Order %s rolled back, stock no longer covers the cart", order_id)


# ----------------------- Ledger -----------------------
def find_order(db: Database, order_id) -> dict:
    order = db["order"].find_one({"_id": object_id(order_id, "Order")})
    if not order:
        raise NotFound("Order not found")
    return order


def get_order(db: Database, order_id: str, actor: dict) -> dict:
    order = find_order(db, order_id)
    if not is_owner_or_admin(actor["id"], order["user"], actor.get("is_admin", False)):
        raise Forbidden("Not authorized to view this order")
    out = serialize_doc(order)
    owner = db["user"].find_one({"_id": order["user"]}, {"username": 1, "email": 1})
    if owner:
        out["customer"] = {"id": str(owner["_id"]), "username": owner.get("username"), "email": owner.get("email")}
    return out


def list_my_orders(db: Database, actor: dict) -> List[dict]:
    docs = db["order"].find({"user": object_id(actor["id"], "User")}).sort("created_at", -1)
    return [serialize_doc(o) for o in docs]


def list_orders(db: Database) -> List[dict]:
    return [serialize_doc(o) for o in db["order"].find({}).sort("created_at", -1)]


def mark_delivered(db: Database, order_id: str) -> dict:
    order = find_order(db, order_id)
    res = db["order"].update_one(
        {"_id": order["_id"], "is_delivered": False},
        {"$set": {"is_delivered": True, "delivered_at": now(), "updated_at": now()}},
    )
    if res.matched_count == 0:
        raise Conflict("Order already delivered")
    logger.info("Order %s delivered", order_id)
    return serialize_doc(find_order(db, order["_id"]))
