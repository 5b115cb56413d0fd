"""
Catalog store

Products with embedded reviews. Stock is only ever changed through the
conditional bulk writes at the bottom of this module.
"""
import logging
import math
import re
from typing import Dict, Iterable, List, Optional

from bson.objectid import ObjectId
from pymongo import UpdateOne
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import create_document, now, object_id, serialize_doc
from errors import Conflict, Forbidden, NotFound
from schemas import PLACEHOLDER_IMAGE, Product, ProductCreateBody, ProductUpdateBody, Review, ReviewBody
from security import is_owner_or_admin

logger = logging.getLogger(__name__)


def get_product_or_404(db: Database, product_id, projection: Optional[dict] = None) -> dict:
    prod = db["product"].find_one({"_id": object_id(product_id, "Product")}, projection)
    if not prod:
        raise NotFound("Product not found")
    return prod


def find_products(db: Database, product_ids: Iterable[ObjectId]) -> Dict[ObjectId, dict]:
    """Bulk lookup keyed by id; missing ids are simply absent."""
    ids = list(set(product_ids))
    return {p["_id"]: p for p in db["product"].find({"_id": {"$in": ids}})}


def list_products(db: Database, keyword: Optional[str], page: int, page_size: int) -> dict:
    filt = {}
    if keyword:
        filt["name"] = {"$regex": re.escape(keyword), "$options": "i"}
    page = max(page, 1)
    total = db["product"].count_documents(filt)
    items = (
        db["product"]
        .find(filt, {"reviews": 0, "stock_holds": 0})
        .sort("_id", 1)
        .skip(page_size * (page - 1))
        .limit(page_size)
    )
    products = [serialize_doc(p) for p in items]
    return {
        "products": products,
        "pagination": {"page": page, "pages": math.ceil(total / page_size), "total": total},
    }


def create_product(db: Database, body: ProductCreateBody, owner_id: str) -> dict:
    product = Product(
        user=object_id(owner_id, "User"),
        name=body.name.strip(),
        image=body.image or PLACEHOLDER_IMAGE,
        price=body.price,
        description=body.description,
        category=body.category,
        stock=body.stock,
    )
    pid = create_document(db, "product", product)
    logger.info("Product %s created by %s", pid, owner_id)
    return serialize_doc(get_product_or_404(db, pid))


def update_product(db: Database, product_id: str, body: ProductUpdateBody, actor: dict) -> dict:
    product = get_product_or_404(db, product_id)
    if not is_owner_or_admin(actor["id"], product.get("user"), actor.get("is_admin", False)):
        raise Forbidden("Not authorized to edit this product")
    update = body.model_dump(exclude_none=True)
    update["updated_at"] = now()
    db["product"].update_one({"_id": product["_id"]}, {"$set": update})
    return serialize_doc(get_product_or_404(db, product["_id"]))


def delete_product(db: Database, product_id: str) -> dict:
    product = get_product_or_404(db, product_id)
    db["product"].delete_one({"_id": product["_id"]})
    logger.info("Product %s deleted", product_id)
    return serialize_doc(product)


def add_review(db: Database, product_id: str, body: ReviewBody, actor: dict) -> dict:
    product = get_product_or_404(db, product_id, {"_id": 1})
    reviewer = object_id(actor["id"], "User")
    review = Review(
        name=actor["username"],
        rating=float(body.rating),
        comment=body.comment,
        user=reviewer,
        created_at=now(),
    )
    # the filter makes the one-review-per-user rule hold under concurrent posts
    res = db["product"].update_one(
        {"_id": product["_id"], "reviews.user": {"$ne": reviewer}},
        {"$push": {"reviews": review.model_dump()}},
    )
    if res.matched_count == 0:
        raise Conflict("Product already reviewed by this user")

    # one pipeline write keeps rating and num_reviews in step with reviews
    db["product"].update_one(
        {"_id": product["_id"]},
        [{"$set": {
            "num_reviews": {"$size": "$reviews"},
            "rating": {"$avg": "$reviews.rating"},
            "updated_at": now(),
        }}],
    )
    return serialize_doc(get_product_or_404(db, product["_id"]))


# ----------------------- Stock -----------------------
def decrement_stock(db: Database, decrements: Dict[ObjectId, int], hold: ObjectId) -> bool:
    """Apply every decrement that stock can cover, tagging each touched product with `hold`.

    Returns False when at least one product could not be decremented; the
    caller must then release the partial write with restore_stock().
    """
    ops: List[UpdateOne] = [
        UpdateOne(
            {"_id": pid, "stock": {"$gte": qty}},
            {"$inc": {"stock": -qty}, "$push": {"stock_holds": hold}},
        )
        for pid, qty in decrements.items()
    ]
    result = db["product"].bulk_write(ops, ordered=True)
    return result.matched_count == len(ops)


def restore_stock(db: Database, decrements: Dict[ObjectId, int], hold: ObjectId) -> None:
    ops = [
        UpdateOne(
            {"_id": pid, "stock_holds": hold},
            {"$inc": {"stock": qty}, "$pull": {"stock_holds": hold}},
        )
        for pid, qty in decrements.items()
    ]
    db["product"].bulk_write(ops, ordered=False)


def release_holds(db: Database, product_ids: Iterable[ObjectId], hold: ObjectId) -> None:
    try:
        db["product"].update_many({"_id": {"$in": list(product_ids)}}, {"$pull": {"stock_holds": hold}})
    except PyMongoError:
        # stale holds only block a later restore for this order, never a sale
        logger.exception("Could not release stock holds for order %s", hold)
