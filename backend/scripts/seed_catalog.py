#!/usr/bin/env python3
"""
Seed products, stock counters and coupons from a JSON file.

The file is either a list of products or an object with "products" and
"coupons" lists. A product entry looks like:

    {"sku": "TEE-BLK", "title": "Black Tee", "price": 499.00,
     "stock": 20, "sizes": {"S": 5, "M": 10}, "colors": {"Black": 20}}

Usage:
    python scripts/seed_catalog.py --file catalog.json
"""
import argparse
import json
import os
import sys

# allow running from repo/scripts
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from storefront.db import SessionLocal, init_db
from storefront.errors import ValidationError
from storefront.repositories.product_repo import ProductRepository
from storefront.services.coupon_service import CouponService

DEMO_CATALOG = {
    "products": [
        {"sku": "TEE-CLASSIC", "title": "Classic Tee", "price_cents": 49900, "stock": 30,
         "sizes": {"S": 8, "M": 12, "L": 10}},
        {"sku": "HOODIE-ZIP", "title": "Zip Hoodie", "price_cents": 149900, "stock": 12,
         "colors": {"Black": 6, "Olive": 6}},
        {"sku": "CAP-LOGO", "title": "Logo Cap", "price_cents": 29900, "stock": 25},
    ],
    "coupons": [
        {"code": "WELCOME10", "discount_percent": 10, "offer_text": "10% off your first order"},
    ],
}


def _price_cents(entry) -> int:
    if entry.get("price_cents") is not None:
        return int(entry["price_cents"])
    # rupee amounts like 499.00 or "499"
    return int(round(float(entry.get("price", 0)) * 100))


def _counts(raw):
    return {str(k): int(v) for k, v in (raw or {}).items()}


def seed(data):
    if isinstance(data, list):
        data = {"products": data}

    init_db()
    db = SessionLocal()
    repo = ProductRepository(db)
    coupons = CouponService(db)
    try:
        seeded = 0
        for entry in data.get("products", []):
            sku = entry.get("sku")
            if not sku:
                continue
            repo.create_or_update(
                sku=sku,
                title=entry.get("title") or entry.get("name") or sku,
                price_cents=_price_cents(entry),
                stock=int(entry.get("stock", 0) or 0),
                sizes=_counts(entry.get("sizes")),
                colors=_counts(entry.get("colors")),
                active=entry.get("active", True),
            )
            seeded += 1
        db.commit()
        print("Seeded products:", seeded)

        for entry in data.get("coupons", []):
            try:
                coupons.create_coupon(
                    entry["code"],
                    entry["discount_percent"],
                    offer_text=entry.get("offer_text"),
                    description=entry.get("description"),
                )
                print("Created coupon:", entry["code"].upper())
            except ValidationError as e:
                print(f"Skipped coupon {entry.get('code')}: {e.message}")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--file", "-f", help="Catalog JSON; a small demo catalog is used when omitted")
    args = parser.parse_args()
    if args.file:
        if not os.path.exists(args.file):
            print("File not found:", args.file)
            sys.exit(1)
        with open(args.file, "r", encoding="utf-8") as f:
            seed(json.load(f))
    else:
        seed(DEMO_CATALOG)
