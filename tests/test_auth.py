"""
Unit tests for the authentication module.

Tests the GoogleAuth class for OAuth2 authentication, token storage and
refresh, and status reporting.
"""

import json
import os
from unittest.mock import MagicMock, patch

import pytest
from google.auth.exceptions import RefreshError, TransportError

from oab_sync.auth.google_auth import (
    SCOPES,
    USERINFO_URL,
    AuthenticationError,
    GoogleAuth,
)


def _mock_creds(valid=True, expired=False, refresh_token="refresh"):
    creds = MagicMock()
    creds.valid = valid
    creds.expired = expired
    creds.refresh_token = refresh_token
    creds.to_json.return_value = json.dumps({"token": "abc", "refresh_token": refresh_token})
    return creds


class TestGoogleAuthInitialization:
    """Tests for GoogleAuth initialization."""

    def test_paths(self, tmp_path):
        """Test that credential and token paths live in the config dir."""
        auth = GoogleAuth(config_dir=tmp_path)
        assert auth.credentials_path == tmp_path / "credentials.json"
        assert auth.token_path == tmp_path / "token.json"

    def test_config_dir_from_environment_variable(self, tmp_path):
        """Test that config dir can be set via environment variable."""
        with patch.dict(os.environ, {"OAB_SYNC_CONFIG_DIR": str(tmp_path)}):
            assert GoogleAuth().config_dir == tmp_path

    def test_scopes(self):
        """Test that contacts access is requested."""
        assert "https://www.googleapis.com/auth/contacts" in SCOPES


class TestGetCredentials:
    """Tests for loading and refreshing stored credentials."""

    def test_no_token(self, tmp_path):
        """Test that a missing token means no credentials."""
        auth = GoogleAuth(config_dir=tmp_path)
        assert auth.get_credentials() is None
        assert not auth.is_authenticated()

    @patch("oab_sync.auth.google_auth.Credentials")
    def test_valid_token(self, mock_credentials, tmp_path):
        """Test that a valid stored token is returned."""
        (tmp_path / "token.json").write_text("{}")
        creds = _mock_creds()
        mock_credentials.from_authorized_user_file.return_value = creds

        assert GoogleAuth(config_dir=tmp_path).get_credentials() is creds
        mock_credentials.from_authorized_user_file.assert_called_once_with(
            str(tmp_path / "token.json"), SCOPES
        )

    @patch("oab_sync.auth.google_auth.Credentials")
    def test_invalid_token_file(self, mock_credentials, tmp_path):
        """Test that an unreadable token is ignored."""
        (tmp_path / "token.json").write_text("{}")
        mock_credentials.from_authorized_user_file.side_effect = ValueError("bad")

        assert GoogleAuth(config_dir=tmp_path).get_credentials() is None

    @patch("oab_sync.auth.google_auth.Request")
    @patch("oab_sync.auth.google_auth.Credentials")
    def test_expired_token_is_refreshed(self, mock_credentials, mock_request, tmp_path):
        """Test that an expired token is refreshed and saved, keeping the email."""
        (tmp_path / "token.json").write_text(json.dumps({"email": "me@example.com"}))
        creds = _mock_creds(valid=False, expired=True)
        mock_credentials.from_authorized_user_file.return_value = creds

        auth = GoogleAuth(config_dir=tmp_path)

        assert auth.get_credentials() is creds
        creds.refresh.assert_called_once()
        saved = json.loads((tmp_path / "token.json").read_text())
        assert saved["token"] == "abc"
        assert saved["email"] == "me@example.com"
        assert (tmp_path / "token.json").stat().st_mode & 0o777 == 0o600

    @patch("oab_sync.auth.google_auth.Request")
    @patch("oab_sync.auth.google_auth.Credentials")
    def test_refresh_failure(self, mock_credentials, mock_request, tmp_path):
        """Test that a failed refresh means no credentials."""
        (tmp_path / "token.json").write_text("{}")
        creds = _mock_creds(valid=False, expired=True)
        creds.refresh.side_effect = RefreshError("revoked")
        mock_credentials.from_authorized_user_file.return_value = creds

        assert GoogleAuth(config_dir=tmp_path).get_credentials() is None

    @patch("oab_sync.auth.google_auth.Credentials")
    def test_expired_without_refresh_token(self, mock_credentials, tmp_path):
        """Test that a token without refresh token cannot be refreshed."""
        (tmp_path / "token.json").write_text("{}")
        creds = _mock_creds(valid=False, expired=True, refresh_token=None)
        mock_credentials.from_authorized_user_file.return_value = creds

        assert GoogleAuth(config_dir=tmp_path).get_credentials() is None
        creds.refresh.assert_not_called()


class TestAuthenticate:
    """Tests for the OAuth flow."""

    def test_missing_client_secrets(self, tmp_path):
        """Test the error when credentials.json is missing."""
        with pytest.raises(FileNotFoundError, match="OAuth credentials file not found"):
            GoogleAuth(config_dir=tmp_path).authenticate()

    @patch.object(GoogleAuth, "get_credentials")
    def test_existing_credentials_are_reused(self, mock_get, tmp_path):
        """Test that no flow runs when a valid token exists."""
        creds = _mock_creds()
        mock_get.return_value = creds

        assert GoogleAuth(config_dir=tmp_path).authenticate() is creds

    @patch.object(GoogleAuth, "_fetch_user_email", return_value="me@example.com")
    @patch("oab_sync.auth.google_auth.InstalledAppFlow")
    def test_flow_saves_token_with_email(self, mock_flow, mock_email, tmp_path):
        """Test a successful browser flow."""
        (tmp_path / "credentials.json").write_text("{}")
        creds = _mock_creds()
        mock_flow.from_client_secrets_file.return_value.run_local_server.return_value = (
            creds
        )

        auth = GoogleAuth(config_dir=tmp_path)
        assert auth.authenticate(force_reauth=True) is creds

        mock_flow.from_client_secrets_file.assert_called_once_with(
            str(tmp_path / "credentials.json"), SCOPES
        )
        assert auth.get_account_email() == "me@example.com"

    @patch("oab_sync.auth.google_auth.InstalledAppFlow")
    def test_flow_failure(self, mock_flow, tmp_path):
        """Test that flow errors become AuthenticationError."""
        (tmp_path / "credentials.json").write_text("{}")
        mock_flow.from_client_secrets_file.side_effect = ValueError("bad client file")

        with pytest.raises(AuthenticationError, match="Failed to authenticate"):
            GoogleAuth(config_dir=tmp_path).authenticate(force_reauth=True)


class TestFetchUserEmail:
    """Tests for _fetch_user_email."""

    @patch("oab_sync.auth.google_auth.AuthorizedSession")
    def test_email_from_userinfo(self, mock_session, tmp_path):
        """Test reading the email from the userinfo endpoint."""
        response = MagicMock(status_code=200)
        response.json.return_value = {"email": "me@example.com"}
        mock_session.return_value.get.return_value = response

        auth = GoogleAuth(config_dir=tmp_path)

        assert auth._fetch_user_email(MagicMock()) == "me@example.com"
        mock_session.return_value.get.assert_called_once_with(
            USERINFO_URL, timeout=auth.auth_timeout
        )

    @patch("oab_sync.auth.google_auth.AuthorizedSession")
    def test_http_error(self, mock_session, tmp_path):
        """Test that a failed request yields None."""
        mock_session.return_value.get.return_value = MagicMock(status_code=401)
        assert GoogleAuth(config_dir=tmp_path)._fetch_user_email(MagicMock()) is None

    @patch("oab_sync.auth.google_auth.AuthorizedSession")
    def test_transport_error(self, mock_session, tmp_path):
        """Test that network failures yield None."""
        mock_session.return_value.get.side_effect = TransportError("offline")
        assert GoogleAuth(config_dir=tmp_path)._fetch_user_email(MagicMock()) is None


class TestStatus:
    """Tests for clearing credentials and reporting status."""

    def test_clear_credentials(self, tmp_path):
        """Test removing the stored token."""
        (tmp_path / "token.json").write_text("{}")
        auth = GoogleAuth(config_dir=tmp_path)

        assert auth.clear_credentials()
        assert not auth.clear_credentials()

    def test_account_email(self, tmp_path):
        """Test the stored email."""
        auth = GoogleAuth(config_dir=tmp_path)
        assert auth.get_account_email() is None

        (tmp_path / "token.json").write_text(json.dumps({"email": "me@example.com"}))
        assert auth.get_account_email() == "me@example.com"

    def test_auth_status(self, tmp_path):
        """Test the status dictionary."""
        (tmp_path / "credentials.json").write_text("{}")

        status = GoogleAuth(config_dir=tmp_path).get_auth_status()

        assert status["authenticated"] is False
        assert status["credentials_exist"] is True
        assert status["token_exists"] is False
        assert status["config_dir"] == str(tmp_path)
