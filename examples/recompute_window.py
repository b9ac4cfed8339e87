"""Example: Recompute a tenant window and check the stored rows

This example runs both reconciliation modes for one tenant and date
window, then reads the stored rows back and runs the QA checks:
1. Fetch orders, refunds and transactions from the Admin API
2. Fold them into daily rows for shopify and financial mode
3. Upsert the rows and read them back as DataFrames
4. Check the sales identity and customer split, and compare the modes

Prerequisites:
- Set SHOPIFY_SHOP and SHOPIFY_ACCESS_TOKEN (and optionally SHOPIFY_TIMEZONE)
- Optionally set RECON_DATABASE_URL (default: sqlite:///daily_sales.db)
"""

from shop_recon import ReconConfig, run_job
from shop_recon.qa import compare_modes, run_daily_sales_qa
from shop_recon.sales import DailySalesStore, marts

config = ReconConfig.from_env()
store = DailySalesStore(config.database_url)

tenant_id = "my-shop"  # MODIFY AS NEEDED
start_date = "2025-01-01"  # MODIFY AS NEEDED
end_date = "2025-01-31"  # MODIFY AS NEEDED

print(f"Reconciling {tenant_id} for {start_date} to {end_date}...")
results = run_job(tenant_id, since=start_date, until=end_date, config=config, store=store)

for r in results:
    print(f"  - {r.context.mode.value}: {r.state.value}, {r.rows_written} rows")
    if r.failure:
        print(f"    {r.failure.error_kind}: {r.failure.message}")
        if r.failure.needs_reauth:
            print("    The shop rejected the token; reconnect the app before retrying.")

frames = {
    mode: marts.fetch_daily(store, tenant_id, mode, start_date, end_date, fill_gaps=True)
    for mode in ("shopify", "financial")
}

for mode, df in frames.items():
    print(f"\n{mode} mode: {len(df)} days")
    if df.empty:
        continue
    print(df[["date", "gross_sales_excl_tax", "refunds_excl_tax", "net_sales_excl_tax", "orders_count"]].head())

    qa_result = run_daily_sales_qa(df)
    print(f"  - Identity failures: {qa_result.summary['identity_failures_count']}")
    print(f"  - Split failures: {qa_result.summary['split_failures_count']}")
    print(f"  - Days without split: {qa_result.summary['rows_without_split']}")

inversions = compare_modes(frames["shopify"], frames["financial"])
if inversions is not None:
    print("\nDays with more financial than shopify orders (late captures):")
    print(inversions)
