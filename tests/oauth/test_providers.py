"""Tests for access token providers."""

from unittest import mock
from urllib.parse import parse_qs, urlsplit

import pytest

from src.oauth.config import StreamlabsClientCredentials, StreamlabsSettings
from src.oauth.exceptions import ConfigurationError, TokenExchangeError, TokenRefreshError
from src.oauth.providers import (
    LoopbackAccessTokenProvider,
    ManualAccessTokenProvider,
    create_access_token_provider,
    parse_redirect_input,
)
from src.oauth.token_manager import TokenManager, TokenPair
from src.oauth.token_storage import CachedTokens


@pytest.fixture
def token_manager():
    """Create a mocked token endpoint client."""
    manager = mock.Mock(spec=TokenManager)
    manager.exchange_auth_code.return_value = TokenPair("new_access", "new_refresh")
    return manager


@pytest.fixture
def mock_server_cls():
    """Patch the loopback listener so no socket is bound."""
    with mock.patch("src.oauth.providers.LoopbackCallbackServer") as server_cls:
        server_cls.return_value.wait_for_request.return_value = False
        yield server_cls


@pytest.fixture
def open_url():
    """Create a fake browser opener."""
    return mock.Mock()


@pytest.fixture
def provider(settings, token_cache, token_manager, dispatcher, open_url):
    """Create a loopback provider."""
    return LoopbackAccessTokenProvider(
        settings, token_cache, token_manager, dispatcher, open_url=open_url
    )


def redirect(mock_server_cls, query):
    """Deliver a redirect as the listener thread would."""
    on_request = mock_server_cls.call_args[1]["on_request"]
    on_request(query)


class TestProvideAccessToken:
    """Tests for AccessTokenProvider.provide_access_token shortcuts."""

    def test_invalid_credentials_fail_immediately(
        self, token_cache, token_manager, dispatcher, mock_server_cls
    ):
        """Missing client secret completes as failed without any network work."""
        settings = StreamlabsSettings(
            credentials=StreamlabsClientCredentials(client_id="id", client_secret=""),
            token_file=None,
        )
        provider = LoopbackAccessTokenProvider(
            settings, token_cache, token_manager, dispatcher, open_url=mock.Mock()
        )
        done = mock.Mock()
        provider.on_done.subscribe(done)

        provider.provide_access_token()

        assert provider.is_done is True
        assert provider.is_error is True
        done.assert_called_once_with(provider)
        mock_server_cls.assert_not_called()
        token_manager.exchange_auth_code.assert_not_called()

    def test_cached_access_token_short_circuits(
        self, provider, token_cache, mock_server_cls, open_url
    ):
        """A cached access token completes successfully without a browser."""
        token_cache.set_access_token("cached_access")
        done = mock.Mock()
        provider.on_done.subscribe(done)

        provider.provide_access_token()

        assert provider.is_done is True
        assert provider.is_error is False
        done.assert_called_once_with(provider)
        mock_server_cls.assert_not_called()
        open_url.assert_not_called()

    def test_refresh_token_ignored_by_default(
        self, provider, token_cache, token_manager, mock_server_cls
    ):
        """A cached refresh token does not skip the full flow unless enabled."""
        token_cache.set(CachedTokens(refresh_token="cached_refresh"))

        provider.provide_access_token()

        token_manager.refresh_access_token.assert_not_called()
        mock_server_cls.return_value.start.assert_called_once()
        provider.cancel()


class TestRefreshTokenPath:
    """Tests for the opt-in refresh token path."""

    @pytest.fixture
    def refresh_settings(self, credentials):
        """Settings with refresh tokens enabled."""
        return StreamlabsSettings(
            credentials=credentials,
            loopback_uri="http://127.0.0.1:8080",
            token_file=None,
            use_refresh_token=True,
        )

    def test_refresh_success_caches_tokens(
        self, refresh_settings, token_cache, token_manager, dispatcher, mock_server_cls
    ):
        """A successful refresh caches the new pair without a browser."""
        token_cache.set(CachedTokens(refresh_token="old_refresh"))
        token_manager.refresh_access_token.return_value = TokenPair("fresh", "rotated")
        provider = LoopbackAccessTokenProvider(
            refresh_settings, token_cache, token_manager, dispatcher, open_url=mock.Mock()
        )

        provider.provide_access_token()
        assert dispatcher.run_until(lambda: provider.is_done, timeout=5)

        assert provider.is_error is False
        assert token_cache.get() == CachedTokens("fresh", "rotated")
        token_manager.refresh_access_token.assert_called_once_with("old_refresh")
        mock_server_cls.assert_not_called()

    def test_refresh_failure_falls_back_to_full_auth(
        self, refresh_settings, token_cache, token_manager, dispatcher, mock_server_cls
    ):
        """A failed refresh starts the interactive flow."""
        token_cache.set(CachedTokens(refresh_token="old_refresh"))
        token_manager.refresh_access_token.side_effect = TokenRefreshError("expired")
        open_url = mock.Mock()
        provider = LoopbackAccessTokenProvider(
            refresh_settings, token_cache, token_manager, dispatcher, open_url=open_url
        )

        provider.provide_access_token()
        assert dispatcher.run_until(lambda: open_url.called, timeout=5)

        assert provider.in_progress is True
        mock_server_cls.return_value.start.assert_called_once()
        provider.cancel()


class TestLoopbackAccessTokenProvider:
    """Tests for LoopbackAccessTokenProvider class."""

    def test_full_auth_opens_browser(self, provider, mock_server_cls, open_url, settings):
        """The browser is sent to the authorization URL for the loopback address."""
        provider.provide_access_token()

        mock_server_cls.return_value.start.assert_called_once()
        open_url.assert_called_once()
        params = parse_qs(urlsplit(open_url.call_args[0][0]).query)
        assert params["client_id"] == ["test_client_id"]
        assert params["redirect_uri"] == [settings.loopback_uri]
        assert params["response_type"] == ["code"]
        assert "code_challenge" not in params
        assert provider.in_progress is True
        assert provider.is_done is False
        provider.cancel()

    def test_code_challenge_sent_when_enabled(
        self, credentials, token_cache, token_manager, dispatcher, mock_server_cls
    ):
        """send_code_challenge attaches the S256 challenge."""
        settings = StreamlabsSettings(
            credentials=credentials, token_file=None, send_code_challenge=True
        )
        open_url = mock.Mock()
        provider = LoopbackAccessTokenProvider(
            settings, token_cache, token_manager, dispatcher, open_url=open_url
        )

        provider.provide_access_token()

        params = parse_qs(urlsplit(open_url.call_args[0][0]).query)
        assert params["code_challenge_method"] == ["S256"]
        assert params["code_challenge"][0] == provider._pending.code_challenge
        provider.cancel()

    def test_successful_redirect_exchanges_code(
        self, provider, mock_server_cls, token_manager, token_cache, dispatcher, settings
    ):
        """A code on the redirect is exchanged with the attempt's verifier."""
        provider.provide_access_token()
        verifier = provider._pending.code_verifier

        redirect(mock_server_cls, {"code": "auth_code_123"})
        assert dispatcher.run_until(lambda: provider.is_done, timeout=5)

        assert provider.is_error is False
        token_manager.exchange_auth_code.assert_called_once_with(
            "auth_code_123", verifier, settings.loopback_uri
        )
        assert token_cache.get() == CachedTokens("new_access", "new_refresh")
        mock_server_cls.return_value.close.assert_called()

    def test_denied_redirect_fails_without_exchange(
        self, provider, mock_server_cls, token_manager, dispatcher
    ):
        """error=access_denied completes as failed and never exchanges."""
        done = mock.Mock()
        provider.on_done.subscribe(done)
        provider.provide_access_token()

        redirect(mock_server_cls, {"error": "access_denied"})
        assert dispatcher.run_until(lambda: provider.is_done, timeout=5)

        assert provider.is_error is True
        done.assert_called_once_with(provider)
        token_manager.exchange_auth_code.assert_not_called()

    def test_empty_error_redirect_fails_without_exchange(
        self, provider, mock_server_cls, token_manager, dispatcher
    ):
        """A blank error parameter alongside a code still fails the attempt."""
        provider.provide_access_token()

        redirect(mock_server_cls, {"error": "", "code": "abc"})
        assert dispatcher.run_until(lambda: provider.is_done, timeout=5)

        assert provider.is_error is True
        token_manager.exchange_auth_code.assert_not_called()

    def test_malformed_redirect_fails(
        self, provider, mock_server_cls, token_manager, dispatcher
    ):
        """A redirect with neither code nor error completes as failed."""
        provider.provide_access_token()

        redirect(mock_server_cls, {})
        assert dispatcher.run_until(lambda: provider.is_done, timeout=5)

        assert provider.is_error is True
        token_manager.exchange_auth_code.assert_not_called()

    def test_exchange_failure_fails(
        self, provider, mock_server_cls, token_manager, token_cache, dispatcher
    ):
        """A token endpoint failure completes as failed and caches nothing."""
        token_manager.exchange_auth_code.side_effect = TokenExchangeError("bad code")
        provider.provide_access_token()

        redirect(mock_server_cls, {"code": "auth_code_123"})
        assert dispatcher.run_until(lambda: provider.is_done, timeout=5)

        assert provider.is_error is True
        assert token_cache.has_any() is False

    def test_listener_bind_failure_fails(
        self, provider, mock_server_cls, open_url
    ):
        """Failure to bind the loopback address completes as failed."""
        mock_server_cls.return_value.start.side_effect = OSError("Address in use")

        provider.provide_access_token()

        assert provider.is_done is True
        assert provider.is_error is True
        open_url.assert_not_called()

    def test_browser_failure_keeps_waiting(self, provider, mock_server_cls, open_url):
        """A browser that can't be opened does not fail the attempt."""
        open_url.side_effect = RuntimeError("no display")

        provider.provide_access_token()

        assert provider.in_progress is True
        provider.cancel()

    def test_cancel_releases_listener(self, provider, mock_server_cls):
        """cancel() completes as failed and closes the listener."""
        done = mock.Mock()
        provider.on_done.subscribe(done)
        provider.provide_access_token()

        provider.cancel()

        assert provider.is_done is True
        assert provider.is_error is True
        done.assert_called_once_with(provider)
        mock_server_cls.return_value.close.assert_called()

    def test_cancel_when_idle_is_noop(self, provider):
        """cancel() without an attempt does nothing."""
        done = mock.Mock()
        provider.on_done.subscribe(done)

        provider.cancel()

        assert provider.is_done is False
        done.assert_not_called()

    def test_redirect_after_cancel_is_ignored(
        self, provider, mock_server_cls, token_manager, dispatcher
    ):
        """A late redirect for a cancelled attempt is dropped."""
        done = mock.Mock()
        provider.on_done.subscribe(done)
        provider.provide_access_token()
        provider.cancel()

        redirect(mock_server_cls, {"code": "late"})
        dispatcher.run_pending()

        done.assert_called_once()
        token_manager.exchange_auth_code.assert_not_called()

    def test_second_call_while_running_is_ignored(self, provider, mock_server_cls):
        """provide_access_token does not start a second attempt."""
        provider.provide_access_token()
        provider.provide_access_token()

        assert mock_server_cls.call_count == 1
        provider.cancel()

    def test_timeout_fails_attempt(
        self, credentials, token_cache, token_manager, dispatcher, mock_server_cls
    ):
        """authorization_timeout completes the attempt as failed."""
        settings = StreamlabsSettings(
            credentials=credentials, token_file=None, authorization_timeout=0.05
        )
        provider = LoopbackAccessTokenProvider(
            settings, token_cache, token_manager, dispatcher, open_url=mock.Mock()
        )

        provider.provide_access_token()
        assert dispatcher.run_until(lambda: provider.is_done, timeout=5)

        assert provider.is_error is True

    def test_foreground_mode_blocks_for_redirect(
        self, credentials, token_cache, token_manager, dispatcher, mock_server_cls
    ):
        """Without background mode the provider waits on the listener."""
        settings = StreamlabsSettings(
            credentials=credentials,
            token_file=None,
            run_in_background=False,
            authorization_timeout=1,
        )
        provider = LoopbackAccessTokenProvider(
            settings, token_cache, token_manager, dispatcher, open_url=mock.Mock()
        )

        provider.provide_access_token()

        mock_server_cls.return_value.wait_for_request.assert_called_once_with(1)
        assert provider.is_done is True
        assert provider.is_error is True


class TestManualAccessTokenProvider:
    """Tests for ManualAccessTokenProvider class."""

    def test_pasted_url_is_exchanged(
        self, settings, token_cache, token_manager, dispatcher
    ):
        """The code from a pasted redirect URL is exchanged."""
        output = mock.Mock()
        prompt = mock.Mock(return_value="http://localhost:8080/?code=pasted_code")
        provider = ManualAccessTokenProvider(
            settings, token_cache, token_manager, dispatcher, prompt=prompt, output=output
        )

        provider.provide_access_token()
        assert dispatcher.run_until(lambda: provider.is_done, timeout=5)

        assert provider.is_error is False
        assert token_manager.exchange_auth_code.call_args[0][0] == "pasted_code"
        assert token_manager.exchange_auth_code.call_args[0][2] == "http://localhost:8080"
        printed = " ".join(str(call.args[0]) for call in output.call_args_list)
        assert "client_id=test_client_id" in printed

    def test_input_error_fails(self, settings, token_cache, token_manager, dispatcher):
        """An error reading input completes as failed."""
        provider = ManualAccessTokenProvider(
            settings,
            token_cache,
            token_manager,
            dispatcher,
            prompt=mock.Mock(side_effect=EOFError()),
            output=mock.Mock(),
        )

        provider.provide_access_token()
        assert dispatcher.run_until(lambda: provider.is_done, timeout=5)

        assert provider.is_error is True
        token_manager.exchange_auth_code.assert_not_called()


class TestParseRedirectInput:
    """Tests for parse_redirect_input."""

    def test_full_url(self):
        """A full redirect URL yields its query parameters."""
        assert parse_redirect_input("http://localhost:8080/?code=abc&state=x") == {
            "code": "abc",
            "state": "x",
        }

    def test_query_string(self):
        """A bare query string is parsed."""
        assert parse_redirect_input("?error=access_denied") == {"error": "access_denied"}

    def test_query_string_keeps_blank_error(self):
        """A blank error parameter is kept so the redirect is rejected."""
        assert parse_redirect_input("http://localhost:8080/?error=&code=abc") == {
            "error": "",
            "code": "abc",
        }

    def test_bare_code(self):
        """Anything else is taken as the code."""
        assert parse_redirect_input("  abc123 \n") == {"code": "abc123"}

    def test_empty_input(self):
        """Empty input yields no parameters."""
        assert parse_redirect_input("   ") == {}


class TestCreateAccessTokenProvider:
    """Tests for create_access_token_provider."""

    def test_loopback_is_default(self, settings, token_cache, token_manager, dispatcher):
        """The default provider is the loopback provider."""
        provider = create_access_token_provider(
            settings, token_cache, token_manager, dispatcher
        )

        assert isinstance(provider, LoopbackAccessTokenProvider)

    def test_manual_provider(self, credentials, token_cache, token_manager, dispatcher):
        """auth_provider=manual selects the manual provider."""
        settings = StreamlabsSettings(
            credentials=credentials, token_file=None, auth_provider="manual"
        )

        provider = create_access_token_provider(
            settings, token_cache, token_manager, dispatcher
        )

        assert isinstance(provider, ManualAccessTokenProvider)

    def test_unknown_provider_raises(self, settings, token_cache, token_manager, dispatcher):
        """An unknown provider name raises ConfigurationError."""
        settings.auth_provider = "android"

        with pytest.raises(ConfigurationError, match="android"):
            create_access_token_provider(settings, token_cache, token_manager, dispatcher)
