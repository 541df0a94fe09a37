"""
Mock identity provider and entitlement service (FastAPI).

Implements just enough of the OAuth 2.0 endpoints and the authorization API
to run examples/sample_app.py locally. Every sign-on succeeds immediately,
without a login page.

Usage:
    pip install -e ".[examples]"
    python examples/mock_server.py

    # Or with uvicorn
    uvicorn examples.mock_server:app --port 8010

Then, in another shell:
    export ENTCLIENT_AUTHZ_URI=http://127.0.0.1:8010/user/oauth20/authz
    export ENTCLIENT_TOKEN_URI=http://127.0.0.1:8010/user/oauth20/token
    export ENTCLIENT_USERINFO_URI=http://127.0.0.1:8010/user/oauth20/userinfo
    export ENTCLIENT_CLIENT_ID=sample-app
    export ENTCLIENT_REDIRECT_URI=http://127.0.0.1:8765/callback
    export ENTCLIENT_SCOPE="openid profile"
    export ENTCLIENT_SIGNER_KEY_FILE=mock-signer.pem
    python examples/sample_app.py

Environment variables:
    MOCK_ITEMS - Comma separated items that are granted (default: Pro,Export)
    MOCK_SIGNER_KEY_FILE - Where to write the signer public key (default: mock-signer.pem)
    PORT - Override port (default: 8010)
"""

import os
import secrets
import time
from contextlib import asynccontextmanager
from urllib.parse import parse_qsl, unquote, urlencode

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse, Response

GRANTED_ITEMS = {
    item.strip() for item in os.getenv("MOCK_ITEMS", "Pro,Export").split(",") if item.strip()
}
SIGNER_KEY_FILE = os.getenv("MOCK_SIGNER_KEY_FILE", "mock-signer.pem")
PORT = int(os.getenv("PORT", "8010"))

SIGNER_KEY = rsa.generate_private_key(public_exponent=65537, key_size=2048)

USER = {
    "sub": "user-1",
    "name": "Jane Doe",
    "given_name": "Jane",
    "family_name": "Doe",
    "email": "jane.doe@example.com",
}

# code -> nonce, access token -> user, license token id -> (item, computer id)
issued_codes: dict[str, str | None] = {}
access_tokens: dict[str, dict] = {}
consumed: dict[str, tuple[str, str | None]] = {}


def write_signer_key() -> None:
    pem = SIGNER_KEY.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    with open(SIGNER_KEY_FILE, "wb") as f:
        f.write(pem)
    print(f"Signer public key written to {SIGNER_KEY_FILE}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    write_signer_key()
    yield


app = FastAPI(
    title="Mock Entitlement Service",
    description="Fake identity provider and authorization API for the sample app",
    version="0.1.0",
    lifespan=lifespan,
)


def sign(claims: dict) -> str:
    return jwt.encode(claims, SIGNER_KEY, algorithm="RS256")


def split_names(raw: str) -> tuple[list[str], dict[str, str]]:
    """Split ``A&B&hw=x`` into bare names and key=value parameters."""
    names, params = [], {}
    for part in raw.split("&"):
        if not part:
            continue
        if "=" in part:
            key, value = part.split("=", 1)
            params[unquote(key)] = unquote(value)
        else:
            names.append(unquote(part))
    return names, params


def bearer_user(request: Request) -> dict:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    user = access_tokens.get(token) if scheme.lower() == "bearer" else None
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid or missing bearer token")
    return user


def render(decision: dict, ext: str, names: list[str]) -> Response:
    if ext == "json":
        return JSONResponse(decision)
    if ext == "jwt":
        return PlainTextResponse(sign(decision), media_type="application/jwt")
    if ext == "txt":
        # One literal per item, in request order
        lines = ["true" if decision.get(name) is True else "false" for name in names]
        return PlainTextResponse("\n".join(lines))
    raise HTTPException(status_code=404, detail=f"Unknown response type: {ext}")


@app.get("/user/oauth20/authz")
async def authorize(request: Request):
    """Authorization endpoint. Redirects straight back with a code."""
    params = request.query_params
    redirect_uri = params.get("redirect_uri")
    if not redirect_uri:
        raise HTTPException(status_code=400, detail="redirect_uri is required")

    if params.get("response_type") != "code":
        query = {"error": "unsupported_response_type"}
    else:
        code = secrets.token_urlsafe(16)
        issued_codes[code] = params.get("nonce")
        query = {"code": code}
    if "state" in params:
        query["state"] = params["state"]

    separator = "&" if "?" in redirect_uri else "?"
    return RedirectResponse(f"{redirect_uri}{separator}{urlencode(query)}", status_code=302)


@app.post("/user/oauth20/token")
async def token(request: Request):
    """Token endpoint for the authorization code grant."""
    form = dict(parse_qsl((await request.body()).decode("utf-8")))
    if form.get("grant_type") != "authorization_code":
        return JSONResponse(status_code=400, content={"error": "unsupported_grant_type"})
    if form.get("code") not in issued_codes:
        return JSONResponse(status_code=400, content={"error": "invalid_grant"})

    nonce = issued_codes.pop(form["code"])
    access_token = secrets.token_urlsafe(24)
    access_tokens[access_token] = USER

    now = int(time.time())
    id_claims = {**USER, "aud": form.get("client_id"), "iat": now, "exp": now + 3600}
    if nonce:
        id_claims["nonce"] = nonce

    return {
        "access_token": access_token,
        "token_type": "Bearer",
        "expires_in": 3600,
        "id_token": sign(id_claims),
    }


@app.get("/user/oauth20/userinfo")
async def userinfo(request: Request):
    return bearer_user(request)


@app.get("/authz/.{ext}")
async def check(ext: str, request: Request):
    """Check items named in the query."""
    bearer_user(request)
    names, _ = split_names(request.url.query)
    if not names:
        raise HTTPException(status_code=400, detail="No authorized items given")
    return render({name: name in GRANTED_ITEMS for name in names}, ext, names)


@app.post("/authz/.{ext}")
async def consume_or_release(ext: str, request: Request):
    """Consume items, or release a consumed license."""
    bearer_user(request)
    names, params = split_names((await request.body()).decode("utf-8"))
    if not names:
        raise HTTPException(status_code=400, detail="No authorized items given")

    if params.get("release") == "true":
        token_id = names[0]
        if consumed.pop(token_id, None) is None:
            failure = {token_id: False, f"{token_id}_errorCode": "noConsumptionFoundById"}
            return render(failure, ext, [token_id])
        print(f"Released license {token_id}")
        return render({token_id: True}, ext, [token_id])

    decision: dict = {}
    token_id = secrets.token_hex(8)
    for name in names:
        granted = name in GRANTED_ITEMS
        decision[name] = granted
        if granted:
            consumed[token_id] = (name, params.get("hw"))
        else:
            decision[f"{name}_errorCode"] = "notEntitled"
    if token_id in consumed:
        decision["jti"] = token_id
        print(f"Consumed {', '.join(n for n in names if decision[n])} as {token_id}")
    return render(decision, ext, names)


if __name__ == "__main__":
    import uvicorn

    print(f"\n🚀 Mock entitlement service on http://127.0.0.1:{PORT}")
    print(f"   Granted items: {', '.join(sorted(GRANTED_ITEMS))}")
    uvicorn.run(app, host="127.0.0.1", port=PORT)
