# Login Routes: OAuth, PAT Validation, Email OTP

import secrets
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel

from api_client import DatabricksAPIClient, DatabricksAPIError, DatabricksConnectionError, log, normalize_host
import config
from dependencies import ApiError, get_client, get_oauth_states, get_otps, get_sessions
import endpoints
import mailer
from session_store import ExpiringStore, new_token

router = APIRouter(prefix="/api", tags=["auth"])


class PatBody(BaseModel):
    pat: Optional[str] = None
    databricksHost: Optional[str] = None


class OtpRequest(BaseModel):
    email: Optional[str] = None
    cluster: Optional[str] = None


class OtpCheck(BaseModel):
    email: Optional[str] = None
    otp: Optional[str] = None


def generate_otp(length: int = config.OTP_LENGTH) -> str:
    return f"{secrets.randbelow(10 ** length):0{length}d}"

def login_redirect(**params: str) -> RedirectResponse:
    return RedirectResponse(f"{config.FRONTEND_URL.rstrip('/')}/login?{urlencode(params)}", status_code=302)

def authorize_url(workspace: str, state: str) -> str:
    query = urlencode({
        "client_id": config.DATABRICKS_CLIENT_ID,
        "response_type": "code",
        "redirect_uri": config.OAUTH_REDIRECT_URI,
        "scope": config.OAUTH_SCOPES,
        "state": state,
    })
    return f"{normalize_host(workspace)}{endpoints.OAUTH_AUTHORIZE}?{query}"

def otp_failure(status: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status, content={"success": False, "message": message})

# ====================================================================================
# OAUTH
# ====================================================================================
@router.get("/oauth/login")
async def oauth_login(workspace: Optional[str] = None, states: ExpiringStore = Depends(get_oauth_states)):
    if not workspace:
        raise ApiError(400, "Workspace is required")
    state = secrets.token_hex(16)
    states.set(state, {"workspace": normalize_host(workspace)})
    url = authorize_url(workspace, state)
    log(f"[AUTH] OAuth authorization URL: {url}")
    return RedirectResponse(url, status_code=302)


@router.get("/oauth/callback")
async def oauth_callback(code: Optional[str] = None, state: Optional[str] = None, error: Optional[str] = None,
                         error_description: Optional[str] = None,
                         client: DatabricksAPIClient = Depends(get_client),
                         states: ExpiringStore = Depends(get_oauth_states),
                         sessions: ExpiringStore = Depends(get_sessions)):
    if error:
        log(f"[AUTH] OAuth error: {error} {error_description or ''}")
        return login_redirect(error=error_description or error)
    if not code or not state:
        return login_redirect(error="Missing code or state parameter")
    pending = states.pop(state)
    if not pending:
        return login_redirect(error="Invalid state parameter")

    workspace = pending["workspace"]
    try:
        tokens = await client.post(endpoints.OAUTH_TOKEN, base_url=workspace, token="",
                                   data={
                                       "grant_type": "authorization_code",
                                       "client_id": config.DATABRICKS_CLIENT_ID,
                                       "client_secret": config.DATABRICKS_CLIENT_SECRET,
                                       "redirect_uri": config.OAUTH_REDIRECT_URI,
                                       "code": code,
                                   },
                                   headers={"Content-Type": "application/x-www-form-urlencoded"})
        me = await client.get(endpoints.SCIM_ME, base_url=workspace, token=tokens["access_token"])
    except (DatabricksAPIError, KeyError) as e:
        log(f"[AUTH] Error in OAuth callback: {e}")
        return login_redirect(error="Failed to authenticate with Databricks")

    session_token = new_token()
    sessions.set(session_token, {
        "email": me.get("userName"),
        "userId": me.get("id"),
        "workspace": workspace,
        "accessToken": tokens.get("access_token"),
        "refreshToken": tokens.get("refresh_token"),
        "source": "oauth",
    })
    log(f"[AUTH] OAuth login for {me.get('userName')}")
    return login_redirect(token=session_token)

# ====================================================================================
# PAT
# ====================================================================================
@router.post("/validate-pat")
async def validate_pat(body: PatBody, client: DatabricksAPIClient = Depends(get_client)):
    if not body.pat or not body.databricksHost:
        raise ApiError(400, "PAT and Databricks host are required")
    try:
        return await client.get(endpoints.SCIM_ME, base_url=body.databricksHost, token=body.pat,
                                timeout=config.PAT_VALIDATION_TIMEOUT_SEC)
    except DatabricksAPIError as e:
        log(f"[AUTH] Error validating PAT: {e}")
        if e.status == 401:
            raise ApiError(401, "Invalid Personal Access Token")
        if e.status == 403:
            raise ApiError(403, "Insufficient permissions: The PAT does not have access to the SCIM API")
        if e.error_code == "TIMEOUT":
            raise ApiError(500, "Request to Databricks timed out")
        if isinstance(e, DatabricksConnectionError):
            raise ApiError(500, "Network error: Could not connect to Databricks")
        raise ApiError(e.status or 500, e.message or "Invalid Personal Access Token")

# ====================================================================================
# EMAIL OTP
# ====================================================================================
@router.post("/send-otp")
async def send_otp(body: OtpRequest, otps: ExpiringStore = Depends(get_otps)):
    if not body.email or "@" not in body.email:
        return otp_failure(400, "Please provide a valid email address")
    otp = generate_otp()
    otps.set(body.email, {"otp": otp, "cluster": body.cluster})
    try:
        await mailer.send_otp_email(body.email, otp)
    except Exception as e:
        log(f"[AUTH] Error sending OTP to {body.email}: {e}")
        otps.discard(body.email)
        return otp_failure(500, "Failed to send verification code")
    return {"success": True, "message": "Verification code sent successfully"}


@router.post("/verify-otp")
async def verify_otp(body: OtpCheck, otps: ExpiringStore = Depends(get_otps),
                     sessions: ExpiringStore = Depends(get_sessions)):
    if not body.email or not body.otp:
        return otp_failure(400, "Email and OTP are required")
    if otps.is_expired(body.email):
        otps.discard(body.email)
        return otp_failure(400, "OTP has expired. Please request a new one.")
    stored = otps.get(body.email)
    if stored is None:
        return otp_failure(400, "No OTP found for this email. Please request a new one.")
    if not secrets.compare_digest(stored["otp"].encode(), body.otp.encode()):
        return otp_failure(400, "Invalid verification code")

    otps.discard(body.email)
    token = new_token()
    sessions.set(token, {"email": body.email, "cluster": stored.get("cluster"), "source": "otp"})
    log(f"[AUTH] OTP verified for {body.email}")
    return {"success": True, "token": token, "message": "Verification successful"}

# ====================================================================================
# SESSION
# ====================================================================================
@router.get("/session")
async def current_session(authorization: Optional[str] = Header(None),
                          sessions: ExpiringStore = Depends(get_sessions)):
    token = (authorization or "").partition("Bearer ")[2].strip()
    if not token:
        raise ApiError(401, "Authentication token required")
    session = sessions.get(token)
    if session is None:
        raise ApiError(401, "Invalid or expired session")
    public = {k: v for k, v in session.items() if k not in ("accessToken", "refreshToken")}
    public["expiresAt"] = sessions.expires_at(token)
    return public
