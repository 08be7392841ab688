"""
Fire concurrent checkouts or duplicate gateway callbacks at a running server
and print what came back. Useful for eyeballing that stock never oversells.

    python tools/concurrency_checkout.py orders --product-id 1 --workers 12
    python tools/concurrency_checkout.py confirm --order-ref order_abc --payment-id pay_1
"""
import argparse
import concurrent.futures
import os
import sys
from collections import Counter

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import requests

from storefront.adapters.gateway_client import sign_payment

BASE = os.environ.get("STOREFRONT_BASE", "http://127.0.0.1:8000")

ADDRESS = {
    "name": "Load Test",
    "phone": "9999999999",
    "address": "1 Test Street",
    "city": "Pune",
    "state": "Maharashtra",
    "pincode": "411001",
}


def order_task(i, product_id, qty, size, method):
    item = {"product_id": product_id, "qty": qty}
    if size:
        item["size"] = size
    payload = {"items": [item], "shipping_address": ADDRESS, "payment_method": method}
    headers = {"X-Customer-Id": f"load-{i}"}
    try:
        r = requests.post(f"{BASE}/api/orders", json=payload, headers=headers, timeout=20)
        return (i, r.status_code, r.text)
    except requests.RequestException as e:
        return (i, "ERR", str(e))


def confirm_task(i, order_ref, payment_id, signature):
    payload = {"gateway_order_id": order_ref, "payment_id": payment_id, "signature": signature}
    try:
        r = requests.post(f"{BASE}/api/payments/confirm", json=payload, timeout=20)
        return (i, r.status_code, r.text)
    except requests.RequestException as e:
        return (i, "ERR", str(e))


def run(workers, task, *args):
    with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as ex:
        futures = [ex.submit(task, i, *args) for i in range(workers)]
        results = [f.result() for f in futures]
    for r in results:
        print(r)
    print("Status counts:", dict(Counter(r[1] for r in results)))


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Concurrency test tool (checkouts or gateway callbacks).")
    sub = parser.add_subparsers(dest="mode", required=True)

    o = sub.add_parser("orders")
    o.add_argument("--product-id", type=int, required=True)
    o.add_argument("--qty", type=int, default=1)
    o.add_argument("--size", default=None)
    o.add_argument("--method", default="cod")
    o.add_argument("--workers", type=int, default=8)

    c = sub.add_parser("confirm")
    c.add_argument("--order-ref", required=True, help="gateway order id returned at checkout")
    c.add_argument("--payment-id", default="pay_load_test")
    c.add_argument("--secret", default=os.environ.get("GATEWAY_KEY_SECRET", "change-this-gateway-secret"))
    c.add_argument("--workers", type=int, default=8)

    args = parser.parse_args()

    if args.mode == "orders":
        run(args.workers, order_task, args.product_id, args.qty, args.size, args.method)
    elif args.mode == "confirm":
        sig = sign_payment(args.secret, args.order_ref, args.payment_id)
        run(args.workers, confirm_task, args.order_ref, args.payment_id, sig)
