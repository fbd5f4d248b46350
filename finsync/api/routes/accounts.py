"""Account linking API routes (Plaid, PayPal, QuickBooks, SBA, manual credit cards)."""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query

from finsync.api.deps import default_period, get_components
from finsync.api.schemas import (
    CardBalanceRequest,
    CreditCardConnectRequest,
    PayPalConnectRequest,
    PlaidExchangeRequest,
    QuickBooksDisconnectRequest,
    SBALoanRequest,
    SBALoanUpdateRequest,
    StatementImportRequest,
)
from finsync.orchestrator import AppComponents

router = APIRouter()


@router.get("/accounts")
async def list_accounts(
    include_inactive: bool = False,
    components: AppComponents = Depends(get_components),
):
    accounts = await components.storage.list_accounts(active_only=not include_inactive)
    return {"success": True, "accounts": accounts}


@router.delete("/accounts/{account_id}")
async def remove_account(
    account_id: str,
    components: AppComponents = Depends(get_components),
):
    """Unlink at the provider and soft-delete. History is kept."""
    account = await components.account_links.remove_account(account_id)
    return {"success": True, "account": account}


# ---- Plaid -------------------------------------------------------------------

@router.post("/plaid/link-token")
async def create_link_token(components: AppComponents = Depends(get_components)):
    data = await components.account_links.create_plaid_link_token()
    return {"success": True, "link_token": data.get("link_token"), "expiration": data.get("expiration")}


@router.post("/plaid/exchange-public-token")
async def exchange_public_token(
    data: PlaidExchangeRequest,
    components: AppComponents = Depends(get_components),
):
    accounts = await components.account_links.link_plaid(data.public_token, data.institution_name)
    return {"success": True, "accounts": accounts}


# ---- PayPal ------------------------------------------------------------------

@router.post("/paypal/connect")
async def connect_paypal(
    data: PayPalConnectRequest,
    components: AppComponents = Depends(get_components),
):
    account = await components.account_links.connect_paypal(data.name)
    return {"success": True, "account": account}


# ---- QuickBooks --------------------------------------------------------------

@router.get("/quickbooks/connect")
async def quickbooks_connect(
    state: Optional[str] = None,
    components: AppComponents = Depends(get_components),
):
    url = components.account_links.quickbooks_authorization_url(state)
    return {"success": True, "authorization_url": url}


@router.get("/quickbooks/callback")
async def quickbooks_callback(
    code: str,
    realmId: str,
    state: Optional[str] = None,
    components: AppComponents = Depends(get_components),
):
    """OAuth redirect target. Intuit sends `code`, `realmId` and our `state`."""
    account = await components.account_links.complete_quickbooks_oauth(code, realmId)
    return {"success": True, "account": account}


@router.post("/quickbooks/disconnect")
async def quickbooks_disconnect(
    data: QuickBooksDisconnectRequest,
    components: AppComponents = Depends(get_components),
):
    deactivated = await components.account_links.disconnect_quickbooks(data.realm_id)
    return {"success": True, "account_deactivated": deactivated}


@router.get("/quickbooks/reports/profit-loss")
async def quickbooks_profit_and_loss(
    realm_id: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    components: AppComponents = Depends(get_components),
):
    """Profit & Loss report for a linked company; the period defaults to the last 30 days."""
    start, end = default_period(start_date, end_date)
    report = await components.account_links.quickbooks_profit_and_loss(realm_id, start, end)
    return {
        "success": True,
        "realm_id": realm_id,
        "start_date": start,
        "end_date": end,
        "report": report,
    }


# ---- SBA ---------------------------------------------------------------------

@router.post("/sba-loans", status_code=201)
async def add_sba_loan(
    data: SBALoanRequest,
    components: AppComponents = Depends(get_components),
):
    account, debt = await components.account_links.add_sba_loan(data.loan_number, data.company)
    return {"success": True, "account": account, "debt": debt}


@router.put("/sba-loans/{loan_number}")
async def update_sba_loan(
    loan_number: str,
    data: SBALoanUpdateRequest,
    components: AppComponents = Depends(get_components),
):
    """Enter a loan's figures by hand when the SBA registry cannot return them."""
    debt = await components.account_links.update_sba_loan(
        loan_number,
        current_balance=data.current_balance,
        monthly_payment=data.monthly_payment,
        interest_rate=data.interest_rate,
        next_payment_date=data.next_payment_date,
    )
    return {"success": True, "debt": debt}


# ---- Manual credit cards -----------------------------------------------------

@router.post("/credit-cards", status_code=201)
async def connect_credit_card(
    data: CreditCardConnectRequest,
    components: AppComponents = Depends(get_components),
):
    account = await components.account_links.connect_manual_card(
        data.institution_name,
        data.last_four,
        credit_limit=data.credit_limit,
        current_balance=data.current_balance,
        company=data.company,
        name=data.name,
    )
    return {"success": True, "account": account}


@router.put("/credit-cards/{account_id}/balance")
async def update_card_balance(
    account_id: str,
    data: CardBalanceRequest,
    components: AppComponents = Depends(get_components),
):
    account = await components.account_links.update_card_balance(
        account_id, data.current_balance, data.statement_balance
    )
    return {"success": True, "account": account}


@router.post("/credit-cards/{account_id}/statements")
async def import_card_statement(
    account_id: str,
    data: StatementImportRequest,
    components: AppComponents = Depends(get_components),
):
    """Import a statement CSV. Re-importing the same file stores nothing new."""
    result = await components.account_links.import_card_statement(account_id, data.csv_data)
    return {"success": True, **result.model_dump()}


@router.get("/credit-cards/{account_id}/transactions")
async def list_card_transactions(
    account_id: str,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    limit: int = Query(50, ge=1, le=1000),
    components: AppComponents = Depends(get_components),
):
    account, transactions = await components.account_links.card_transactions(
        account_id, date_from, date_to, limit
    )
    return {"success": True, "account": account, "transactions": transactions}
