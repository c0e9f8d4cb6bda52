"""Unit tests for the relay-backed proxy backend."""

import pytest
import requests
from unittest.mock import Mock

from setka_studio.backends.proxy import (
    DEFAULT_RELAY_URL,
    PROXY_CAPABILITIES,
    ProxyBackend,
    extract_image_url,
)
from setka_studio.core.exceptions import MalformedResponseError, ProviderError
from setka_studio.core.models import GenerationRequest


def relay_response(status_code=200, payload=None, reason="OK"):
    response = Mock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.reason = reason
    if payload is None:
        response.json.side_effect = ValueError("No JSON")
    else:
        response.json.return_value = payload
    return response


@pytest.fixture
def dalle_request():
    return GenerationRequest(prompt="A red fox", provider_id="dall-e")


class TestExtractImageUrl:
    """Tests for extract_image_url."""

    def test_url(self):
        assert extract_image_url({"data": [{"url": "https://cdn/x.png"}]}) == "https://cdn/x.png"

    def test_b64(self):
        assert extract_image_url({"data": [{"b64_json": "AAA"}]}) == "data:image/png;base64,AAA"

    @pytest.mark.parametrize("payload", [None, [], {}, {"data": []}, {"data": ["x"]}, {"data": [{}]}])
    def test_missing(self, payload):
        assert extract_image_url(payload) is None


class TestProxyBackend:
    """Tests for ProxyBackend."""

    def test_initialization(self):
        backend = ProxyBackend(model="dall-e", session=Mock())

        assert backend.relay_url == DEFAULT_RELAY_URL
        assert backend.api_key is None
        assert backend.name == "Proxy (dall-e)"
        assert backend.capabilities == PROXY_CAPABILITIES

    def test_initialization_requires_model(self):
        with pytest.raises(ValueError, match="model"):
            ProxyBackend(model="", session=Mock())

    def test_generate_image_success(self, dalle_request):
        session = Mock()
        session.post.return_value = relay_response(payload={"data": [{"url": "https://cdn/fox.png"}]})
        backend = ProxyBackend(model="dall-e", relay_url="http://relay/api", timeout=30, session=session)

        image = backend.generate_image(dalle_request)

        assert image == "https://cdn/fox.png"
        session.post.assert_called_once_with(
            "http://relay/api",
            json={"prompt": "A red fox", "model": "dall-e"},
            timeout=30,
        )

    def test_input_images_dropped(self, sample_reference_image):
        session = Mock()
        session.post.return_value = relay_response(payload={"data": [{"url": "https://cdn/fox.png"}]})
        backend = ProxyBackend(model="dall-e", session=session)
        request = GenerationRequest(
            prompt="A red fox",
            reference_images=[sample_reference_image],
            provider_id="dall-e",
        )

        backend.generate_image(request)

        assert session.post.call_args.kwargs["json"] == {"prompt": "A red fox", "model": "dall-e"}

    def test_error_message_from_relay(self, dalle_request):
        session = Mock()
        session.post.return_value = relay_response(
            400, {"message": "Your prompt was rejected"}, reason="Bad Request"
        )
        backend = ProxyBackend(model="dall-e", session=session)

        with pytest.raises(ProviderError, match="Your prompt was rejected") as exc_info:
            backend.generate_image(dalle_request)

        assert exc_info.value.retryable is False
        assert exc_info.value.http_status == 400

    def test_rate_limit_retryable(self, dalle_request):
        session = Mock()
        session.post.return_value = relay_response(429, reason="Too Many Requests")
        backend = ProxyBackend(model="dall-e", session=session)

        with pytest.raises(ProviderError, match="Relay error: 429") as exc_info:
            backend.generate_image(dalle_request)

        assert exc_info.value.retryable is True

    def test_network_error(self, dalle_request):
        session = Mock()
        session.post.side_effect = requests.ConnectionError("refused")
        backend = ProxyBackend(model="dall-e", session=session)

        with pytest.raises(ProviderError, match="Relay request failed") as exc_info:
            backend.generate_image(dalle_request)

        assert exc_info.value.retryable is False

    def test_success_without_image_is_malformed(self, dalle_request):
        session = Mock()
        session.post.return_value = relay_response(payload={"data": []})
        backend = ProxyBackend(model="dall-e", session=session)

        with pytest.raises(MalformedResponseError):
            backend.generate_image(dalle_request)

    def test_health_check(self):
        session = Mock()
        session.get.return_value = relay_response(405, {"message": "Method Not Allowed"})
        backend = ProxyBackend(model="dall-e", session=session)

        assert backend.health_check() is True

    def test_health_check_unreachable(self):
        session = Mock()
        session.get.side_effect = requests.ConnectionError("refused")
        backend = ProxyBackend(model="dall-e", session=session)

        assert backend.health_check() is False
