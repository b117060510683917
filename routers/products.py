import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from pydantic import EmailStr, TypeAdapter, ValidationError
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

from database import PRODUCTS, USERS, get_db, parse_object_id, serialize_doc, utcnow
from errors import ForbiddenError, NotFoundError, ValidationFailedError
from guards import optional_identity, require_auth, require_seller
from schemas import Contact, Product, parse_tags
from security import Identity
from storage import MAX_IMAGE_BYTES, MAX_IMAGES_PER_REQUEST, ImageStorage, StoredImage, get_storage, validate_image

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/products", tags=["products"])

NEWEST_FIRST = [("createdAt", DESCENDING), ("_id", DESCENDING)]
DEFAULT_LIST_LIMIT = 50
MAX_LIST_LIMIT = 100
SELLER_SUMMARY_FIELDS = {"name": 1, "email": 1, "phone": 1, "location": 1}
LIKES_FROM_SET = [{"$set": {"likes": {"$size": "$likedBy"}}}]

_email_adapter = TypeAdapter(EmailStr)


# Helpers shared with the admin router

def load_product(db: Database, product_id: str) -> Dict[str, Any]:
    product = db[PRODUCTS].find_one({"_id": parse_object_id(product_id, "Product")})
    if not product:
        raise NotFoundError("Product not found")
    return product


def is_owner_or_admin(product: Dict[str, Any], identity: Optional[Identity]) -> bool:
    if identity is None:
        return False
    return identity.role == "admin" or str(product.get("seller")) == identity.id


def can_view(product: Dict[str, Any], identity: Optional[Identity]) -> bool:
    return bool(product.get("approved")) or is_owner_or_admin(product, identity)


def with_sellers(db: Database, docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Serialize products, expanding ``seller`` to a read-only contact summary."""
    seller_ids = list({doc["seller"] for doc in docs if doc.get("seller") is not None})
    sellers = {}
    if seller_ids:
        for user in db[USERS].find({"_id": {"$in": seller_ids}}, SELLER_SUMMARY_FIELDS):
            sellers[user["_id"]] = serialize_doc(user)
    items = []
    for doc in docs:
        item = serialize_doc(doc)
        item["seller"] = sellers.get(doc.get("seller"))
        items.append(item)
    return items


def destroy_images(storage: ImageStorage, public_ids: Iterable[str]) -> List[str]:
    """Best-effort delete of stored images. Returns the ids that could not be removed."""
    failed = []
    for public_id in public_ids:
        try:
            removed = storage.delete(public_id)
        except Exception:
            logger.warning("Failed to delete stored image %s", public_id, exc_info=True)
            removed = False
        if not removed:
            failed.append(public_id)
    return failed


def delete_product_cascade(db: Database, storage: ImageStorage, product: Dict[str, Any]) -> List[str]:
    """Delete every stored image, then the product record regardless of image failures."""
    failed = destroy_images(storage, [img["publicId"] for img in product.get("images", [])])
    if failed:
        logger.warning("Product %s deleted with %d orphaned image(s): %s", product["_id"], len(failed), failed)
    db[PRODUCTS].delete_one({"_id": product["_id"]})
    return failed


def _read_uploads(files: Optional[List[UploadFile]]) -> List[Tuple[bytes, str]]:
    # browsers send an empty part for an untouched file input
    files = [f for f in files or [] if f.filename]
    if len(files) > MAX_IMAGES_PER_REQUEST:
        raise ValidationFailedError(f"At most {MAX_IMAGES_PER_REQUEST} images are allowed")
    uploads = []
    for upload in files:
        # one byte past the limit is enough to reject an oversized file
        content = upload.file.read(MAX_IMAGE_BYTES + 1)
        validate_image(content, upload.filename)
        uploads.append((content, upload.filename))
    return uploads


def _store_uploads(storage: ImageStorage, uploads: List[Tuple[bytes, str]]) -> List[StoredImage]:
    stored: List[StoredImage] = []
    try:
        for content, filename in uploads:
            stored.append(storage.upload(content, filename))
    except Exception:
        logger.error("Image upload failed after %d of %d file(s)", len(stored), len(uploads))
        destroy_images(storage, [image.public_id for image in stored])
        raise
    return stored


def _required_text(value: str, field: str) -> str:
    value = value.strip()
    if not value:
        raise ValidationFailedError(errors=[{"field": field, "message": f"{field} must not be empty"}])
    return value


def _optional_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.strip() or None


# Routes

@router.get("")
def list_products(
    q: Optional[str] = None,
    category: Optional[str] = None,
    tag: Optional[str] = None,
    featured: Optional[bool] = None,
    location: Optional[str] = None,
    limit: int = Query(DEFAULT_LIST_LIMIT, ge=1),
    page: int = Query(1, ge=1),
    db: Database = Depends(get_db),
):
    query: Dict[str, Any] = {"approved": True}
    if q:
        query["title"] = {"$regex": re.escape(q), "$options": "i"}
    if category:
        query["category"] = category
    if tag:
        query["tags"] = tag
    if featured is not None:
        query["featured"] = featured
    if location:
        query["location"] = location

    limit = min(limit, MAX_LIST_LIMIT)
    cursor = db[PRODUCTS].find(query).sort(NEWEST_FIRST).skip((page - 1) * limit).limit(limit)
    return with_sellers(db, list(cursor))


@router.get("/seller/{seller_id}")
def list_seller_products(
    seller_id: str,
    identity: Optional[Identity] = Depends(optional_identity),
    db: Database = Depends(get_db),
):
    seller_oid = parse_object_id(seller_id, "Seller")
    query: Dict[str, Any] = {"seller": seller_oid}
    if identity is None or (identity.role != "admin" and identity.id != seller_id):
        query["approved"] = True
    return [serialize_doc(doc) for doc in db[PRODUCTS].find(query).sort(NEWEST_FIRST)]


@router.get("/{product_id}")
def get_product(
    product_id: str,
    identity: Optional[Identity] = Depends(optional_identity),
    db: Database = Depends(get_db),
):
    product = load_product(db, product_id)
    if not can_view(product, identity):
        raise NotFoundError("Product not found")
    return with_sellers(db, [product])[0]


@router.post("", status_code=status.HTTP_201_CREATED)
def create_product(
    title: str = Form(...),
    description: str = Form(...),
    price: float = Form(..., ge=0),
    category: Optional[str] = Form(None),
    tags: Optional[str] = Form(None),
    contactEmail: Optional[str] = Form(None),
    contactPhone: Optional[str] = Form(None),
    images: Optional[List[UploadFile]] = File(None),
    identity: Identity = Depends(require_seller),
    db: Database = Depends(get_db),
    storage: ImageStorage = Depends(get_storage),
):
    uploads = _read_uploads(images)
    if not uploads:
        raise ValidationFailedError("At least one image is required")

    seller = db[USERS].find_one({"_id": parse_object_id(identity.id, "User")})
    if not seller:
        raise NotFoundError("User not found")

    contact_email = _optional_text(contactEmail) or seller["email"]
    try:
        contact_email = _email_adapter.validate_python(contact_email)
    except ValidationError:
        raise ValidationFailedError(errors=[{"field": "contactEmail", "message": "Invalid email address"}])

    title = _required_text(title, "title")
    description = _required_text(description, "description")

    stored = _store_uploads(storage, uploads)
    now = utcnow()
    product = Product(
        title=title,
        description=description,
        price=price,
        images=[image.to_mongo() for image in stored],
        category=_optional_text(category),
        tags=parse_tags(tags),
        seller=seller["_id"],
        contact=Contact(email=contact_email, phone=_optional_text(contactPhone)),
        # admins skip the moderation queue
        approved=identity.role == "admin",
        # snapshot of the seller's location, not kept in sync afterwards
        location=seller.get("location"),
        created_at=now,
        updated_at=now,
    )
    result = db[PRODUCTS].insert_one(product.to_mongo())
    logger.info("Product %s created by %s (approved=%s)", result.inserted_id, identity.id, product.approved)
    return serialize_doc(db[PRODUCTS].find_one({"_id": result.inserted_id}))


@router.put("/{product_id}")
def update_product(
    product_id: str,
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    price: Optional[float] = Form(None, ge=0),
    category: Optional[str] = Form(None),
    tags: Optional[str] = Form(None),
    removePublicIds: Optional[List[str]] = Form(None),
    newImages: Optional[List[UploadFile]] = File(None),
    identity: Identity = Depends(require_seller),
    db: Database = Depends(get_db),
    storage: ImageStorage = Depends(get_storage),
):
    product = load_product(db, product_id)
    if not is_owner_or_admin(product, identity):
        raise ForbiddenError("Forbidden")

    updates: Dict[str, Any] = {}
    if title is not None:
        updates["title"] = _required_text(title, "title")
    if description is not None:
        updates["description"] = _required_text(description, "description")
    if price is not None:
        updates["price"] = price
    if category is not None:
        updates["category"] = _optional_text(category)
    if tags is not None:
        updates["tags"] = parse_tags(tags)

    remove_ids = parse_tags(removePublicIds)
    uploads = _read_uploads(newImages)
    if not updates and not remove_ids and not uploads:
        raise ValidationFailedError("No fields to update")

    images = list(product.get("images", []))
    # only images attached to this product may be destroyed
    attached = {image["publicId"] for image in images}
    targets = [public_id for public_id in remove_ids if public_id in attached]
    # new images are stored before anything is destroyed
    stored = _store_uploads(storage, uploads)
    if targets or stored:
        images = [image for image in images if image["publicId"] not in targets]
        images.extend(image.to_mongo() for image in stored)
        updates["images"] = images

    updates["updatedAt"] = utcnow()
    updated = db[PRODUCTS].find_one_and_update(
        {"_id": product["_id"]}, {"$set": updates}, return_document=ReturnDocument.AFTER
    )
    if not updated:
        destroy_images(storage, [image.public_id for image in stored])
        raise NotFoundError("Product not found")
    destroy_images(storage, targets)
    return serialize_doc(updated)


@router.delete("/{product_id}")
def delete_product(
    product_id: str,
    identity: Identity = Depends(require_seller),
    db: Database = Depends(get_db),
    storage: ImageStorage = Depends(get_storage),
):
    product = load_product(db, product_id)
    if not is_owner_or_admin(product, identity):
        raise ForbiddenError("Forbidden")
    delete_product_cascade(db, storage, product)
    return {"message": "Deleted"}


@router.post("/{product_id}/like")
def toggle_like(
    product_id: str,
    identity: Identity = Depends(require_auth),
    db: Database = Depends(get_db),
):
    product = load_product(db, product_id)
    if not can_view(product, identity):
        raise NotFoundError("Product not found")

    user_oid = parse_object_id(identity.id, "User")
    operator = "$pull" if user_oid in product.get("likedBy", []) else "$addToSet"
    updated = db[PRODUCTS].find_one_and_update(
        {"_id": product["_id"]}, {operator: {"likedBy": user_oid}}, return_document=ReturnDocument.AFTER
    )
    if not updated:
        raise NotFoundError("Product not found")

    # recount from the stored set so concurrent toggles cannot leave the counter behind
    updated = db[PRODUCTS].find_one_and_update(
        {"_id": product["_id"]}, LIKES_FROM_SET, return_document=ReturnDocument.AFTER
    )
    if not updated:
        raise NotFoundError("Product not found")
    return {"product": serialize_doc(updated), "liked": user_oid in updated.get("likedBy", [])}
