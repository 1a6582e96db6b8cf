# socialhub/routers/connections.py
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from socialhub.db.models import SocialAccount
from socialhub.deps import get_connector
from socialhub.services.oauth_connector import OAuthConnector

router = APIRouter(prefix="/connections", tags=["connections"])


def account_out(acct: SocialAccount) -> Dict[str, Any]:
    # never expose token material
    return {
        "id": acct.id,
        "user_id": acct.user_id,
        "organization_id": acct.organization_id,
        "platform": acct.platform.value,
        "platform_id": acct.platform_id,
        "username": acct.username,
        "display_name": acct.display_name,
        "profile_url": acct.profile_url,
        "status": acct.status.value,
        "token_expiry": acct.token_expiry.isoformat() if acct.token_expiry else None,
        "scopes": acct.scopes or [],
        "last_error": acct.last_error,
        "has_refresh_token": bool(acct.refresh_token_encrypted),
    }


@router.get("/accounts")
def list_accounts(
    user_id: str = Query(...),
    organization_id: Optional[str] = None,
    connector: OAuthConnector = Depends(get_connector),
) -> Dict[str, Any]:
    accounts = connector.list_accounts(user_id, organization_id)
    return {"status": "ok", "accounts": [account_out(a) for a in accounts]}


@router.post("/accounts/{account_id}/refresh")
async def refresh_account(account_id: int, connector: OAuthConnector = Depends(get_connector)) -> Dict[str, Any]:
    acct = await connector.refresh_token(account_id)
    return {"status": "ok", "account": account_out(acct)}


@router.delete("/accounts/{account_id}")
async def disconnect_account(account_id: int, connector: OAuthConnector = Depends(get_connector)) -> Dict[str, Any]:
    acct = await connector.disconnect(account_id)
    return {"status": "ok", "account": account_out(acct)}


@router.get("/{platform}/connect")
def connect(
    platform: str,
    user_id: str = Query(...),
    organization_id: Optional[str] = None,
    connector: OAuthConnector = Depends(get_connector),
) -> Dict[str, Any]:
    url = connector.initiate_connect(user_id, platform, organization_id)
    return {"status": "ok", "auth_url": url}


@router.get("/{platform}/callback")
async def callback(
    platform: str,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    error_description: Optional[str] = None,
    connector: OAuthConnector = Depends(get_connector),
):
    if error:
        # user denied consent or the provider failed; the state stays unused and expires
        return JSONResponse(
            status_code=400,
            content={"status": "error", "error": error, "message": error_description or error},
        )
    acct = await connector.handle_callback(platform, code, state)
    return {"status": "ok", "account": account_out(acct)}
