"""
Streamlit Frontend for FinSync

The operator dashboard: today's numbers, the ledger, allocations and debts.

DESIGN PRINCIPLES:
1. Every figure comes from the stored ledger
2. Allocation changes are explicit form submissions
3. Clear error messages, never silent failures
4. Sync runs only when asked ("Sync now") or on the scheduler

Run with: streamlit run app/main.py
"""

import asyncio
from datetime import date, timedelta
from decimal import Decimal

import streamlit as st

from finsync.config import validate_all_settings
from finsync.errors import FinSyncError
from finsync.models.ledger import CompanyName, Provider, TransactionFilter, TransactionType, UNALLOCATED
from finsync.orchestrator import AppComponents, create_app_components


# Page configuration
st.set_page_config(
    page_title="FinSync",
    page_icon="💼",
    layout="wide",
    initial_sidebar_state="expanded",
)

# Custom CSS
st.markdown("""
<style>
    .stButton>button {
        width: 100%;
        margin-top: 10px;
    }
    .success-box {
        padding: 20px;
        background-color: #d4edda;
        border-radius: 10px;
        border-left: 5px solid #28a745;
        margin: 10px 0;
    }
    .error-box {
        padding: 20px;
        background-color: #f8d7da;
        border-radius: 10px;
        border-left: 5px solid #dc3545;
        margin: 10px 0;
    }
</style>
""", unsafe_allow_html=True)


COMPANY_OPTIONS = [UNALLOCATED] + [c.value for c in CompanyName]


def run_async(coro):
    """Helper to run async functions in Streamlit."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@st.cache_resource
def get_components() -> AppComponents:
    """Get or create application components (cached)."""
    try:
        return create_app_components(use_storage=True)
    except Exception as e:
        st.error(f"Failed to initialize storage: {e}")
        return create_app_components(use_storage=False)


def money(value) -> str:
    return f"${Decimal(value):,.2f}"


def main():
    """Main application entry point."""
    components = get_components()

    st.sidebar.title("💼 FinSync")
    st.sidebar.markdown("---")

    page = st.sidebar.radio(
        "Navigate to:",
        ["📊 Dashboard", "📒 Transactions", "💳 Debts", "⚙️ Settings"],
        index=0,
    )

    st.sidebar.markdown("---")
    st.sidebar.markdown(
        """
        **Daily routine:**
        1. Sync now (or let the scheduler run)
        2. Allocate new transactions to a company
        3. Record debt payments as they go out
        """
    )

    if page == "📊 Dashboard":
        render_dashboard_page(components)
    elif page == "📒 Transactions":
        render_transactions_page(components)
    elif page == "💳 Debts":
        render_debts_page(components)
    elif page == "⚙️ Settings":
        render_settings_page(components)


def render_dashboard_page(components: AppComponents):
    """Render the dashboard page."""
    st.title("📊 Dashboard")

    if st.button("🔄 Sync now", type="primary"):
        with st.spinner("Syncing all providers..."):
            result = run_async(components.engine.synchronize())
        if result.succeeded:
            st.success(f"✅ Synced {result.total_records} records from {len(result.providers)} providers")
        else:
            st.warning(f"⚠️ Synced {result.total_records} records; failed: {', '.join(result.failed_providers)}")
            for name, outcome in result.providers.items():
                if outcome.error:
                    st.caption(f"{name}: {outcome.error}")

    summary = run_async(components.reporting.dashboard_summary(date.today()))
    today = summary["todays_spending"]

    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Today's spending", money(today["total"]), f"{today['percent_change']}% vs yesterday", delta_color="inverse")
    col2.metric("Month to date", money(summary["month_to_date_spent"]))
    col3.metric("Total debt", money(summary["total_debt"]), f"{summary['debt_count']} debts", delta_color="off")
    col4.metric("Available balance", money(summary["balances"].get("total", 0)))

    st.markdown("---")
    left, right = st.columns(2)

    with left:
        st.markdown("### Spending, last 7 days")
        trends = run_async(components.reporting.spending_trends(7, date.today()))
        st.bar_chart(
            {"amount": [float(t["amount"]) for t in trends]},
        )
        st.caption(" · ".join(t["date"].strftime("%a") for t in trends))

    with right:
        st.markdown("### Categories, last 30 days")
        breakdown = run_async(
            components.reporting.category_breakdown(date.today() - timedelta(days=30), date.today())
        )
        if breakdown:
            st.dataframe(
                [{"Category": row["category"], "Total": money(row["total"]), "Count": row["count"]} for row in breakdown],
                use_container_width=True,
            )
        else:
            st.info("No spending recorded in the last 30 days.")


def render_transactions_page(components: AppComponents):
    """Render the transactions list and allocation form."""
    st.title("📒 Transactions")

    col1, col2, col3, col4 = st.columns(4)
    with col1:
        provider = st.selectbox(
            "Provider",
            options=[None] + list(Provider),
            format_func=lambda x: "All Providers" if x is None else x.value.replace("_", " ").title(),
        )
    with col2:
        company = st.selectbox(
            "Company",
            options=[None] + COMPANY_OPTIONS,
            format_func=lambda x: "All Companies" if x is None else x,
        )
    with col3:
        type_ = st.selectbox(
            "Type",
            options=[None] + list(TransactionType),
            format_func=lambda x: "All" if x is None else x.value.title(),
        )
    with col4:
        search = st.text_input("Search", placeholder="merchant or description")

    filters = TransactionFilter(
        provider=provider,
        company=company,
        type=type_,
        search=search or None,
        limit=200,
    )
    transactions, total = run_async(components.storage.list_transactions(filters))
    st.caption(f"Showing {len(transactions)} of {total}")

    st.dataframe(
        [
            {
                "Date": t.transaction_date.isoformat(),
                "Description": t.description,
                "Category": t.category,
                "Type": t.type.value,
                "Amount": money(t.amount),
                "Company": t.company,
                "Split": ", ".join(f"{s.company.value} {s.percentage}%" for s in t.split_allocations),
                "Pending": t.pending,
                "Provider": t.provider.value,
            }
            for t in transactions
        ],
        use_container_width=True,
    )

    if not transactions:
        st.info("📋 Transactions appear here after the first sync or manual entry.")
        return

    st.markdown("---")
    st.markdown("### Allocate")

    labels = {f"{t.transaction_date} · {t.description} · {money(t.amount)}": t for t in transactions}
    chosen = labels[st.selectbox("Transaction", options=list(labels))]

    mode = st.radio("Allocation", ["Single company", "Split"], horizontal=True)
    with st.form("allocation_form"):
        if mode == "Single company":
            target = st.selectbox("Company", options=COMPANY_OPTIONS, index=COMPANY_OPTIONS.index(chosen.company))
            percentage = st.number_input("Percentage", min_value=0.0, max_value=100.0, value=100.0, step=5.0)
        else:
            shares = {}
            for name in CompanyName:
                shares[name.value] = st.number_input(f"{name.value} %", min_value=0.0, max_value=100.0, value=0.0, step=5.0)

        submitted = st.form_submit_button("💾 Save allocation", type="primary")

    if submitted:
        try:
            if mode == "Single company":
                run_async(components.allocation.allocate(chosen.id, target, Decimal(str(percentage))))
            else:
                run_async(components.allocation.split_allocate(chosen.id, [
                    {"company": name, "percentage": Decimal(str(pct))}
                    for name, pct in shares.items() if pct > 0
                ]))
            st.success("✅ Allocation saved")
            st.rerun()
        except FinSyncError as e:
            st.error(f"❌ {e}")


def render_debts_page(components: AppComponents):
    """Render the debts page."""
    st.title("💳 Debts")

    debts = run_async(components.storage.list_debts(active_only=True))
    total = run_async(components.debts.total_debt())
    st.metric("Total debt", money(total))

    if not debts:
        st.info("No debts tracked yet. Connect the debt spreadsheet or add an SBA loan.")
        return

    rows = []
    for debt in debts:
        utilization = components.debts.utilization(debt)
        progress = components.debts.payoff_progress(debt)
        rows.append({
            "Name": debt.name,
            "Kind": debt.kind.value.replace("_", " ").title(),
            "Balance": money(debt.current_balance),
            "Limit": money(debt.credit_limit) if debt.credit_limit else "",
            "Utilization": f"{utilization:.1f}%" if utilization is not None else "",
            "Payoff": f"{progress:.1f}%" if progress is not None else "",
            "Minimum": money(debt.minimum_payment),
            "Due day": debt.due_date_day or "",
        })
    st.dataframe(rows, use_container_width=True)

    upcoming = run_async(components.debts.upcoming_payments(7, date.today()))
    if upcoming:
        st.markdown("### Due in the next 7 days")
        for due, debt in upcoming:
            st.markdown(f"- **{debt.name}**: {money(debt.minimum_payment)} on {due:%b %d}")

    st.markdown("---")
    st.markdown("### Record a payment")
    by_name = {d.name: d for d in debts}
    with st.form("payment_form"):
        name = st.selectbox("Debt", options=list(by_name))
        amount = st.number_input("Amount", min_value=0.0, step=10.0)
        note = st.text_input("Note (optional)")
        submitted = st.form_submit_button("💾 Record payment", type="primary")

    if submitted:
        try:
            debt, _ = run_async(components.debts.record_payment(
                by_name[name].id, Decimal(str(amount)), note or None
            ))
            st.success(f"✅ Payment recorded. New balance: {money(debt.current_balance)}")
            st.rerun()
        except FinSyncError as e:
            st.error(f"❌ {e}")


def render_settings_page(components: AppComponents):
    """Render the settings page."""
    st.title("⚙️ Settings")

    st.markdown("### Connection Status")

    status = validate_all_settings()

    services = [
        ("Plaid (Banks & Cards)", "plaid"),
        ("PayPal (Payments)", "paypal"),
        ("Google Sheets (Storage & Debts)", "google_sheets"),
        ("QuickBooks (Accounting)", "quickbooks"),
        ("SBA (Loans)", "sba"),
        ("Sync", "sync"),
    ]

    for name, key in services:
        if status.get(key, False):
            st.success(f"✅ {name} - Configured")
        else:
            error = status.get(f"{key}_error", "Not configured")
            st.error(f"❌ {name} - {error}")

    st.markdown("### Active providers")
    providers = [p.value for p in components.registry.providers]
    st.write(", ".join(providers) if providers else "None")

    st.markdown("### Linked accounts")
    accounts = run_async(components.storage.list_accounts(active_only=True))
    if accounts:
        st.dataframe(
            [
                {
                    "Provider": a.provider.value,
                    "Institution": a.institution_name,
                    "Name": a.name,
                    "Balance": money(a.current_balance),
                    "Last synced": a.last_synced.isoformat() if a.last_synced else "never",
                    "Error": a.sync_error or "",
                }
                for a in accounts
            ],
            use_container_width=True,
        )
    else:
        st.info("No accounts linked yet.")

    st.markdown("---")
    st.markdown("### Configuration")
    st.markdown(
        "To configure the application, create a `.env` file with your API keys. "
        "See `.env.example` for the required variables."
    )


if __name__ == "__main__":
    main()
