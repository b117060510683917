import logging
import re
from collections import defaultdict
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import PRODUCTS, USERS, get_db, parse_object_id, serialize_doc, user_out, utcnow
from errors import ConflictError, NotFoundError, ValidationFailedError
from guards import require_admin
from routers.products import NEWEST_FIRST, delete_product_cascade, load_product, with_sellers
from schemas import AdminUserUpdate, PasswordReset, Role
from security import hash_password
from storage import ImageStorage, get_storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])

MAX_USER_LIST = 200


def _update_user(db: Database, user_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    fields = dict(fields, updatedAt=utcnow())
    user = db[USERS].find_one_and_update(
        {"_id": parse_object_id(user_id, "User")}, {"$set": fields}, return_document=ReturnDocument.AFTER
    )
    if not user:
        raise NotFoundError("User not found")
    return user


def _set_product_flags(db: Database, product_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    fields = dict(fields, updatedAt=utcnow())
    product = db[PRODUCTS].find_one_and_update(
        {"_id": parse_object_id(product_id, "Product")}, {"$set": fields}, return_document=ReturnDocument.AFTER
    )
    if not product:
        raise NotFoundError("Product not found")
    return product


def _seller_summaries(db: Database, sellers: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    totals: Dict[Any, Dict[str, int]] = defaultdict(
        lambda: {"totalProducts": 0, "approvedProducts": 0, "pendingProducts": 0, "totalLikes": 0}
    )
    seller_ids = [seller["_id"] for seller in sellers]
    projection = {"seller": 1, "approved": 1, "likes": 1}
    for product in db[PRODUCTS].find({"seller": {"$in": seller_ids}}, projection):
        row = totals[product["seller"]]
        row["totalProducts"] += 1
        if product.get("approved"):
            row["approvedProducts"] += 1
        else:
            row["pendingProducts"] += 1
        row["totalLikes"] += int(product.get("likes", 0))

    return [{"seller": user_out(seller), **totals[seller["_id"]]} for seller in sellers]


# Dashboard

@router.get("/dashboard")
def dashboard(db: Database = Depends(get_db)):
    return {
        "totalUsers": db[USERS].count_documents({}),
        "totalSellers": db[USERS].count_documents({"role": "seller"}),
        "totalProducts": db[PRODUCTS].count_documents({}),
        "pendingApprovals": db[PRODUCTS].count_documents({"approved": False}),
        "featuredProducts": db[PRODUCTS].count_documents({"featured": True}),
    }


# Users

@router.get("/users")
def list_users(
    q: Optional[str] = None,
    role: Optional[Role] = None,
    limit: int = Query(MAX_USER_LIST, ge=1),
    db: Database = Depends(get_db),
):
    query: Dict[str, Any] = {}
    if q:
        pattern = {"$regex": re.escape(q), "$options": "i"}
        query["$or"] = [{"name": pattern}, {"email": pattern}]
    if role:
        query["role"] = role
    cursor = db[USERS].find(query).sort(NEWEST_FIRST).limit(min(limit, MAX_USER_LIST))
    return [user_out(user) for user in cursor]


@router.patch("/users/{user_id}")
def update_user(user_id: str, payload: AdminUserUpdate, db: Database = Depends(get_db)):
    fields = {k: v for k, v in payload.model_dump(exclude_unset=True, by_alias=True).items() if v is not None}
    if not fields:
        raise ValidationFailedError("No fields to update")

    user_oid = parse_object_id(user_id, "User")
    if "email" in fields and db[USERS].find_one({"email": fields["email"], "_id": {"$ne": user_oid}}, {"_id": 1}):
        raise ConflictError("Email already in use")
    try:
        user = _update_user(db, user_id, fields)
    except DuplicateKeyError:
        raise ConflictError("Email already in use")
    logger.info("Admin updated user %s: %s", user_id, sorted(fields))
    return user_out(user)


@router.post("/users/{user_id}/reset-password")
def reset_password(user_id: str, payload: PasswordReset, db: Database = Depends(get_db)):
    _update_user(db, user_id, {"password_hash": hash_password(payload.password)})
    logger.info("Admin reset password for user %s", user_id)
    return {"message": "Password updated"}


@router.delete("/users/{user_id}")
def delete_user(user_id: str, db: Database = Depends(get_db)):
    result = db[USERS].delete_one({"_id": parse_object_id(user_id, "User")})
    if result.deleted_count == 0:
        raise NotFoundError("User not found")
    logger.info("Admin deleted user %s", user_id)
    return {"message": "User deleted"}


# Sellers

@router.get("/sellers")
def list_sellers(db: Database = Depends(get_db)):
    sellers = list(db[USERS].find({"role": "seller"}).sort(NEWEST_FIRST).limit(MAX_USER_LIST))
    return _seller_summaries(db, sellers)


@router.get("/sellers/{seller_id}/summary")
def seller_summary(seller_id: str, db: Database = Depends(get_db)):
    seller = db[USERS].find_one({"_id": parse_object_id(seller_id, "User")})
    if not seller:
        raise NotFoundError("User not found")
    return _seller_summaries(db, [seller])[0]


@router.post("/sellers/{seller_id}/approve")
def approve_seller(seller_id: str, db: Database = Depends(get_db)):
    return user_out(_update_user(db, seller_id, {"role": "seller", "isActive": True}))


@router.post("/sellers/{seller_id}/suspend")
def suspend_seller(seller_id: str, db: Database = Depends(get_db)):
    return user_out(_update_user(db, seller_id, {"isActive": False}))


# Products

@router.get("/products")
def list_all_products(
    q: Optional[str] = None,
    approved: Optional[bool] = None,
    db: Database = Depends(get_db),
):
    query: Dict[str, Any] = {}
    if q:
        query["title"] = {"$regex": re.escape(q), "$options": "i"}
    if approved is not None:
        query["approved"] = approved
    return with_sellers(db, list(db[PRODUCTS].find(query).sort(NEWEST_FIRST)))


@router.post("/products/{product_id}/approve")
def approve_product(product_id: str, db: Database = Depends(get_db)):
    return serialize_doc(_set_product_flags(db, product_id, {"approved": True}))


@router.post("/products/{product_id}/feature")
def feature_product(product_id: str, featured: bool = True, db: Database = Depends(get_db)):
    if featured and not load_product(db, product_id).get("approved"):
        raise ValidationFailedError("Only approved products can be featured")
    return serialize_doc(_set_product_flags(db, product_id, {"featured": featured}))


@router.delete("/products/{product_id}")
def delete_any_product(
    product_id: str,
    db: Database = Depends(get_db),
    storage: ImageStorage = Depends(get_storage),
):
    delete_product_cascade(db, storage, load_product(db, product_id))
    return {"message": "Product deleted"}
