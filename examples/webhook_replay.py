"""Example: Recompute the days an order webhook touches

A webhook handler verifies the payload, works out which local days the
order can affect, and recomputes exactly those days through the normal
driver path. Replaying the same webhook converges on the same rows.

Prerequisites:
- Set SHOPIFY_SHOP, SHOPIFY_ACCESS_TOKEN and SHOPIFY_WEBHOOK_SECRET
- Save a webhook body as order_webhook.json (MODIFY AS NEEDED)
"""

import json
import os
from pathlib import Path

from shop_recon import ReconConfig, run_job
from shop_recon.credentials import EnvCredentialStore
from shop_recon.webhooks import affected_window, verify_webhook

body = Path("order_webhook.json").read_bytes()
signature = os.environ.get("WEBHOOK_HMAC", "")  # X-Shopify-Hmac-Sha256 header value
secret = os.environ["SHOPIFY_WEBHOOK_SECRET"]

if not verify_webhook(body, signature, secret):
    raise SystemExit("Webhook signature does not match; ignoring payload.")

config = ReconConfig.from_env()
credentials = EnvCredentialStore()
tenant_id = "my-shop"  # MODIFY AS NEEDED
tz = credentials.get_connection(tenant_id).timezone or config.default_timezone

since, until = affected_window(json.loads(body), tz)
print(f"Order touches {since} to {until}; recomputing...")

for r in run_job(tenant_id, since=since, until=until, config=config, credentials=credentials):
    print(f"  - {r.context.mode.value}: {r.state.value}, {r.rows_written} rows")
