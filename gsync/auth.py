"""OAuth2 login and access token management for Google Drive."""

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
import socket
import time
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Callable
from urllib.parse import parse_qs, urlencode, urlparse

import httpx

from .database import Database
from .exceptions import GSyncAuthenticationError, GSyncNetworkError
from .utils import TOKEN_EXPIRY_MARGIN

logger = logging.getLogger(__name__)

AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
DRIVE_SCOPE = "https://www.googleapis.com/auth/drive"

CALLBACK_PORT_RANGE = (4000, 8000)


@dataclass
class LoginData:
    """Tokens returned by Google's token endpoint."""

    access_token: str
    expires_in: int
    refresh_token: str | None = None


def save_login_data(database: Database, login_data: LoginData) -> None:
    """Persist tokens.

    A login that carries a refresh token replaces the stored user; a plain
    refresh only updates the access token and its expiry.
    """
    expiry = int(time.time()) + login_data.expires_in
    with database.connect() as conn:
        if login_data.refresh_token is not None:
            conn.execute("DELETE FROM user")
            conn.execute(
                "INSERT INTO user (access_token, refresh_token, expiry) "
                "VALUES (?, ?, ?)",
                (login_data.access_token, login_data.refresh_token, expiry),
            )
        else:
            conn.execute(
                "UPDATE user SET access_token = ?, expiry = ?",
                (login_data.access_token, expiry),
            )


def _post_token_request(
    data: dict[str, str], transport: httpx.BaseTransport | None = None
) -> dict:
    try:
        with httpx.Client(transport=transport, timeout=30.0) as client:
            response = client.post(TOKEN_URL, data=data)
    except httpx.RequestError as e:
        raise GSyncNetworkError(f"Network error: {e}") from e

    try:
        payload = response.json() if response.content else {}
    except ValueError:
        payload = {}
    if response.is_error:
        error = payload.get("error_description") or payload.get("error")
        raise GSyncAuthenticationError(
            f"Token request failed with status {response.status_code}: {error}",
            code=response.status_code,
        )
    return payload


class OAuthTokenProvider:
    """Reads access tokens from the database and refreshes expired ones."""

    def __init__(
        self,
        database: Database,
        client_id: str,
        client_secret: str,
        transport: httpx.BaseTransport | None = None,
    ):
        self.database = database
        self.client_id = client_id
        self.client_secret = client_secret
        self._transport = transport

    def get_access_token(self) -> str:
        """Return a valid access token.

        Raises:
            GSyncAuthenticationError: If nobody is logged in or the refresh
                fails
        """
        with self.database.connect() as conn:
            row = conn.execute(
                "SELECT access_token, refresh_token, expiry FROM user"
            ).fetchone()

        # The connection is closed here; refreshing writes to the database
        if row is None:
            raise GSyncAuthenticationError("Not logged in. Run 'gsync login' first.")

        if time.time() > row["expiry"] - TOKEN_EXPIRY_MARGIN:
            logger.debug("Access token expired, refreshing")
            login_data = self.refresh(row["refresh_token"])
            save_login_data(self.database, login_data)
            return login_data.access_token

        return row["access_token"]

    def refresh(self, refresh_token: str) -> LoginData:
        """Exchange a refresh token for a new access token."""
        payload = _post_token_request(
            {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            },
            transport=self._transport,
        )
        return LoginData(
            access_token=payload["access_token"],
            expires_in=int(payload["expires_in"]),
        )


# =============================================================================
# Interactive login
# =============================================================================


def generate_code() -> tuple[str, str]:
    """Generate a PKCE code verifier and its S256 challenge."""
    code_verifier = secrets.token_urlsafe(72)
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    code_challenge = base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")
    return code_verifier, code_challenge


def create_authentication_uri(
    client_id: str, code_challenge: str, state: str, redirect_uri: str
) -> str:
    """Build the URL the user opens to grant access."""
    query = urlencode(
        {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": DRIVE_SCOPE,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
            "state": state,
            "access_type": "offline",
            "prompt": "consent",
        }
    )
    return f"{AUTH_URL}?{query}"


def exchange_code(
    client_id: str,
    client_secret: str,
    code: str,
    code_verifier: str,
    redirect_uri: str,
    transport: httpx.BaseTransport | None = None,
) -> LoginData:
    """Exchange an authorization code for access and refresh tokens."""
    payload = _post_token_request(
        {
            "client_id": client_id,
            "client_secret": client_secret,
            "code": code,
            "code_verifier": code_verifier,
            "grant_type": "authorization_code",
            "redirect_uri": redirect_uri,
        },
        transport=transport,
    )
    return LoginData(
        access_token=payload["access_token"],
        expires_in=int(payload["expires_in"]),
        refresh_token=payload.get("refresh_token"),
    )


def find_free_port() -> int:
    """Pick a random free port in the callback range."""
    while True:
        port = secrets.randbelow(CALLBACK_PORT_RANGE[1] - CALLBACK_PORT_RANGE[0])
        port += CALLBACK_PORT_RANGE[0]
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            try:
                sock.bind(("127.0.0.1", port))
            except OSError:
                continue
            return port


class _CallbackHandler(BaseHTTPRequestHandler):
    """Receives the redirect from Google and stores the query on the server."""

    def do_GET(self) -> None:  # noqa: N802
        query = parse_qs(urlparse(self.path).query)
        self.server.callback_query = {k: v[0] for k, v in query.items()}  # type: ignore[attr-defined]
        if "code" in query:
            status, body = 200, "You can now close this tab."
        else:
            status, body = 400, query.get("error", ["Missing code"])[0]
        self.send_response(status)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.end_headers()
        self.wfile.write(body.encode())

    def log_message(self, format: str, *args) -> None:
        logger.debug("Callback listener: " + format, *args)


def wait_for_code(port: int, state: str) -> str:
    """Serve one request on localhost and return the authorization code.

    Raises:
        GSyncAuthenticationError: On an error redirect or a state mismatch
    """
    with HTTPServer(("127.0.0.1", port), _CallbackHandler) as server:
        server.callback_query = None  # type: ignore[attr-defined]
        while server.callback_query is None:  # type: ignore[attr-defined]
            server.handle_request()
        query: dict[str, str] = server.callback_query  # type: ignore[attr-defined]

    if "error" in query:
        raise GSyncAuthenticationError(f"Authorization failed: {query['error']}")
    if query.get("state") != state:
        raise GSyncAuthenticationError("State parameter does not match")
    if "code" not in query:
        raise GSyncAuthenticationError("Authorization response is missing a code")
    return query["code"]


def perform_oauth2_login(
    database: Database,
    client_id: str,
    client_secret: str,
    show_url: Callable[[str], None],
) -> LoginData:
    """Run the authorization code + PKCE flow and store the tokens.

    Args:
        database: Database to store the tokens in
        client_id: OAuth client id
        client_secret: OAuth client secret
        show_url: Called with the URL the user has to open
    """
    code_verifier, code_challenge = generate_code()
    state = secrets.token_urlsafe(24)
    port = find_free_port()
    redirect_uri = f"http://localhost:{port}"

    show_url(create_authentication_uri(client_id, code_challenge, state, redirect_uri))
    code = wait_for_code(port, state)
    logger.info("Code received. Exchanging for tokens.")

    login_data = exchange_code(
        client_id, client_secret, code, code_verifier, redirect_uri
    )
    save_login_data(database, login_data)
    return login_data
