from __future__ import annotations

from datetime import datetime

from flask import Blueprint, jsonify, request

from kiosk.extensions import db
from kiosk.models import Product
from kiosk.utils.audit import record_audit
from kiosk.utils.auth import Role, require_role, session_user
from kiosk.utils.errors import NotFoundError, ValidationError

products_bp = Blueprint("products_bp", __name__, url_prefix="/api/products")
vendor_products_bp = Blueprint("vendor_products_bp", __name__, url_prefix="/api/vendor/products")

_EDITABLE = ("name", "description", "category", "price", "stock", "image_url", "is_active")


def _clean_fields(data: dict, *, partial: bool) -> dict:
    out: dict = {}
    if "name" in data or not partial:
        name = (data.get("name") or "").strip()
        if len(name) < 2:
            raise ValidationError("Product name is required")
        out["name"] = name[:200]
    if "price" in data or not partial:
        try:
            price = float(data.get("price"))
        except (TypeError, ValueError):
            raise ValidationError("price must be a number")
        if price <= 0:
            raise ValidationError("price must be greater than zero")
        out["price"] = round(price, 2)
    if "stock" in data or not partial:
        try:
            stock = int(data.get("stock") if data.get("stock") is not None else 0)
        except (TypeError, ValueError):
            raise ValidationError("stock must be an integer")
        if stock < 0:
            raise ValidationError("stock cannot be negative")
        out["stock"] = stock
    for key in ("description", "category", "image_url"):
        if key in data:
            out[key] = (str(data.get(key) or "")).strip() or None
    if "is_active" in data:
        out["is_active"] = bool(data.get("is_active"))
    return out


@products_bp.get("")
def list_products():
    q = (request.args.get("q") or "").strip()
    category = (request.args.get("category") or "").strip()
    try:
        limit = max(1, min(int(request.args.get("limit") or 50), 100))
        offset = max(0, int(request.args.get("offset") or 0))
    except ValueError:
        raise ValidationError("limit and offset must be integers")
    query = Product.query.filter(Product.is_active.is_(True))
    if q:
        query = query.filter(Product.name.ilike(f"%{q}%"))
    if category:
        query = query.filter(Product.category == category)
    total = query.count()
    rows = query.order_by(Product.created_at.desc()).offset(offset).limit(limit).all()
    return jsonify({"ok": True, "items": [p.to_dict() for p in rows], "total": total}), 200


@products_bp.get("/<int:product_id>")
def get_product(product_id: int):
    product = db.session.get(Product, product_id)
    if product is None or not product.is_active:
        raise NotFoundError("Product not found")
    return jsonify({"ok": True, "product": product.to_dict()}), 200


@vendor_products_bp.get("")
@require_role(Role.VENDOR)
def vendor_list_products():
    vendor = session_user()
    rows = Product.query.filter_by(vendor_id=int(vendor.id)).order_by(Product.created_at.desc()).all()
    return jsonify({"ok": True, "items": [p.to_dict() for p in rows]}), 200


@vendor_products_bp.post("")
@require_role(Role.VENDOR)
def vendor_create_product():
    vendor = session_user()
    fields = _clean_fields(request.get_json(silent=True) or {}, partial=False)
    product = Product(vendor_id=int(vendor.id), **fields)
    db.session.add(product)
    db.session.flush()
    record_audit(
        "product.created",
        actor_user_id=int(vendor.id),
        actor_role=Role.VENDOR.value,
        target_type="product",
        target_id=product.id,
    )
    db.session.commit()
    return jsonify({"ok": True, "product": product.to_dict()}), 201


@vendor_products_bp.patch("/<int:product_id>")
@require_role(Role.VENDOR)
def vendor_update_product(product_id: int):
    vendor = session_user()
    product = db.session.get(Product, product_id)
    if product is None or int(product.vendor_id) != int(vendor.id):
        raise NotFoundError("Product not found")
    fields = _clean_fields(request.get_json(silent=True) or {}, partial=True)
    if not fields:
        raise ValidationError("Nothing to update")
    for key in _EDITABLE:
        if key in fields:
            setattr(product, key, fields[key])
    product.updated_at = datetime.utcnow()
    record_audit(
        "product.updated",
        actor_user_id=int(vendor.id),
        actor_role=Role.VENDOR.value,
        target_type="product",
        target_id=product.id,
        metadata={"fields": sorted(fields)},
    )
    db.session.commit()
    return jsonify({"ok": True, "product": product.to_dict()}), 200
