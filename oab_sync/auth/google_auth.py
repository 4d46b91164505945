"""
OAuth2 authentication for the destination Google account.

Provides OAuth 2.0 authentication with support for:
- The installed-app browser flow
- Automatic token refresh
- Token storage with owner-only permissions in the config directory
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional

from google.auth.exceptions import GoogleAuthError, RefreshError, TransportError
from google.auth.transport.requests import AuthorizedSession, Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow

from oab_sync.utils.paths import resolve_config_dir

# OAuth2 scopes required for Google Contacts access
SCOPES = [
    "https://www.googleapis.com/auth/contacts",
    "https://www.googleapis.com/auth/userinfo.email",
    "openid",  # Required by Google when requesting userinfo.email
]

USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

CLIENT_SECRETS_FILE = "credentials.json"
TOKEN_FILE = "token.json"

# Timeout for network requests made during authentication (seconds)
DEFAULT_AUTH_TIMEOUT = 10

logger = logging.getLogger(__name__)


class AuthenticationError(Exception):
    """Raised when authentication fails or credentials are invalid."""

    pass


class GoogleAuth:
    """
    OAuth2 authentication manager for the synchronized account.

    Attributes:
        config_dir: Directory for storing credentials and tokens
        credentials_path: Path to OAuth client credentials file
        token_path: Path to the stored token

    Usage:
        auth = GoogleAuth()
        creds = auth.authenticate()

        # Without user interaction
        creds = auth.get_credentials()
    """

    def __init__(
        self,
        config_dir: Optional[Path] = None,
        auth_timeout: int = DEFAULT_AUTH_TIMEOUT,
    ):
        self.config_dir = resolve_config_dir(config_dir)
        self.credentials_path = self.config_dir / CLIENT_SECRETS_FILE
        self.token_path = self.config_dir / TOKEN_FILE
        self.auth_timeout = auth_timeout

    def _load_credentials(self) -> Optional[Credentials]:
        if not self.token_path.exists():
            logger.debug("No token file found")
            return None

        try:
            creds: Credentials = Credentials.from_authorized_user_file(
                str(self.token_path), SCOPES
            )
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(f"Invalid token file {self.token_path}: {e}")
            return None
        return creds

    def _save_credentials(self, creds: Credentials, email: Optional[str] = None) -> None:
        self.config_dir.mkdir(parents=True, mode=0o700, exist_ok=True)

        token_data = json.loads(creds.to_json())
        if email:
            token_data["email"] = email
        elif self.token_path.exists():
            # Keep the email stored by an earlier authentication
            previous = self._read_token_data()
            if previous.get("email"):
                token_data["email"] = previous["email"]

        self.token_path.write_text(json.dumps(token_data), encoding="utf-8")
        self.token_path.chmod(0o600)
        logger.debug(f"Saved credentials to {self.token_path}")

    def _read_token_data(self) -> dict[str, Any]:
        try:
            data: dict[str, Any] = json.loads(self.token_path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return {}
        return data

    def _refresh_credentials(self, creds: Credentials) -> bool:
        if not creds.refresh_token:
            return False

        try:
            creds.refresh(Request())
        except RefreshError as e:
            logger.warning(f"Failed to refresh credentials: {e}")
            return False
        logger.debug("Refreshed credentials")
        return True

    def _fetch_user_email(self, creds: Credentials) -> Optional[str]:
        """Fetch the authenticated user's email address, or None."""
        session = AuthorizedSession(creds)
        try:
            response = session.get(USERINFO_URL, timeout=self.auth_timeout)
        except (TransportError, OSError) as e:
            logger.debug(f"Failed to fetch user email: {e}")
            return None

        if response.status_code != 200:
            logger.debug(f"Failed to fetch user email: HTTP {response.status_code}")
            return None
        email: Optional[str] = response.json().get("email")
        return email

    def get_credentials(self) -> Optional[Credentials]:
        """
        Get valid credentials without user interaction.

        Returns:
            Valid Credentials object, or None if not available
        """
        creds = self._load_credentials()
        if creds is None:
            return None

        if creds.valid:
            return creds

        if creds.expired and self._refresh_credentials(creds):
            self._save_credentials(creds)
            return creds

        return None

    def authenticate(self, force_reauth: bool = False) -> Credentials:
        """
        Authenticate the account, running the browser flow when needed.

        Args:
            force_reauth: Ignore stored credentials and re-authenticate

        Returns:
            Valid Credentials object

        Raises:
            AuthenticationError: If authentication fails
            FileNotFoundError: If credentials.json is not found
        """
        if not force_reauth:
            creds = self.get_credentials()
            if creds is not None:
                logger.info("Using existing credentials")
                return creds

        if not self.credentials_path.exists():
            raise FileNotFoundError(
                f"OAuth credentials file not found: {self.credentials_path}\n"
                "Please download your OAuth client credentials from "
                "Google Cloud Console and save them to this location."
            )

        logger.info("Starting OAuth flow")

        try:
            flow = InstalledAppFlow.from_client_secrets_file(
                str(self.credentials_path), SCOPES
            )
            new_creds: Credentials = flow.run_local_server(port=0)
        except (GoogleAuthError, ValueError, OSError) as e:
            raise AuthenticationError(f"Failed to authenticate: {e}") from e

        self._save_credentials(new_creds, email=self._fetch_user_email(new_creds))
        logger.info("Authentication succeeded")
        return new_creds

    def is_authenticated(self) -> bool:
        return self.get_credentials() is not None

    def clear_credentials(self) -> bool:
        """
        Remove the stored token.

        Returns:
            True if a token was removed, False if there was none
        """
        if self.token_path.exists():
            self.token_path.unlink()
            logger.info("Cleared stored credentials")
            return True
        return False

    def get_account_email(self) -> Optional[str]:
        """Email address stored with the token, if known."""
        if not self.token_path.exists():
            return None
        email: Optional[str] = self._read_token_data().get("email")
        return email

    def get_auth_status(self) -> dict[str, Any]:
        """
        Get authentication status.

        Returns:
            Dictionary with keys authenticated, email, token_path,
            token_exists, credentials_path, credentials_exist, config_dir
        """
        creds = self.get_credentials()
        return {
            "authenticated": creds is not None,
            "email": self.get_account_email(),
            "token_path": str(self.token_path),
            "token_exists": self.token_path.exists(),
            "credentials_path": str(self.credentials_path),
            "credentials_exist": self.credentials_path.exists(),
            "config_dir": str(self.config_dir),
        }
