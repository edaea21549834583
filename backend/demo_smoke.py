import json
import sys
from pathlib import Path

from fastapi.testclient import TestClient

import main

DEMO_RECEIPT = {
    "restaurantName": "Smoke Demo Bistro",
    "date": "2026-10-18",
    "currency": "$",
    "items": [
        {"id": "a", "quantity": 1, "description": "Margherita Pizza", "price": 20.0},
        {"id": "b", "quantity": 2, "description": "Lemonade", "price": 10.0},
    ],
    "subtotal": 30.0,
    "tax": 3.0,
    "tip": 6.0,
    "total": 39.0,
}


def run_demo(image_path=None) -> None:
    client = TestClient(main.app)

    if image_path is not None:
        with open(image_path, "rb") as f:
            scan_resp = client.post(
                "/scan-receipt/upload?targetLanguage=en",
                files={"file": (Path(image_path).name, f.read(), "image/jpeg")},
            )
        scan_resp.raise_for_status()
        receipt = scan_resp.json()["receipt"]
    else:
        receipt = DEMO_RECEIPT

    share_resp = client.post("/share", json=receipt)
    share_resp.raise_for_status()
    share_url = share_resp.json()["shareUrl"]

    decode_resp = client.post("/share/decode", json={"link": share_url})
    decode_resp.raise_for_status()
    shared = decode_resp.json()["receipt"]
    items = shared["items"]
    if not items:
        raise RuntimeError("Shared receipt has no items")

    selections = [{"itemId": items[0]["id"], "isSelected": True, "splitCount": 2}]
    alloc_resp = client.post("/allocate", json={"token": share_url, "selections": selections})
    alloc_resp.raise_for_status()

    print("=== Smoke Demo OK ===")
    print("Restaurant:", shared["restaurantName"])
    print("Items:", len(items))
    print("Share URL length:", len(share_url))
    print("My share:")
    print(json.dumps(alloc_resp.json(), indent=2))


if __name__ == "__main__":
    run_demo(sys.argv[1] if len(sys.argv) > 1 else None)
