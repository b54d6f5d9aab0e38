"""Tests for the Helix and GQL HTTP clients."""
import json

import httpx
import pytest

from plustwo.utils.twitch_api import (
    HELIX_API_BASE,
    OAUTH_TOKEN_URL,
    HelixClient,
    SubscriptionError,
    TwitchApiError,
)
from plustwo.utils.twitch_gql import TwitchGqlClient, TwitchGqlError
from tests.fakes import comment_node, connection, user_node, video_node

SUBSCRIPTIONS_URL = f"{HELIX_API_BASE}/eventsub/subscriptions"


class Router:
    """Records requests and answers them from a queue per URL."""

    def __init__(self):
        self.responses = {}
        self.requests = []

    def add(self, url, *responses):
        self.responses.setdefault(url, []).extend(responses)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.responses[str(request.url)]
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, Exception):
            raise response
        return response

    def to(self, url):
        return [r for r in self.requests if str(r.url) == url]


def token_response(token="access-1"):
    return httpx.Response(
        200,
        json={"access_token": token, "refresh_token": "refresh-2", "expires_in": 3600},
    )


def make_helix(router):
    return HelixClient(
        client_id="cid",
        client_secret="secret",
        refresh_token="refresh-1",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(router)),
    )


def make_gql(router, max_attempts=3):
    return TwitchGqlClient(
        client_id="gql-client",
        url="https://gql.test/gql",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(router)),
        max_attempts=max_attempts,
        retry_backoff=0,
    )


@pytest.mark.unit
class TestHelixClient:
    def test_requires_credentials(self, monkeypatch):
        monkeypatch.setattr("plustwo.utils.twitch_api.settings.twitch_client_id", None)
        with pytest.raises(ValueError):
            HelixClient(client_secret="secret", refresh_token="refresh")

    async def test_subscribe(self):
        router = Router()
        router.add(OAUTH_TOKEN_URL, token_response())
        router.add(SUBSCRIPTIONS_URL, httpx.Response(202, json={"data": [{"id": "sub-1"}]}))
        helix = make_helix(router)

        subscription_id = await helix.subscribe(
            "stream.online", {"broadcaster_user_id": "42"}, "session-1"
        )

        assert subscription_id == "sub-1"
        request = router.to(SUBSCRIPTIONS_URL)[0]
        assert request.headers["Authorization"] == "Bearer access-1"
        assert request.headers["Client-ID"] == "cid"
        assert json.loads(request.content) == {
            "type": "stream.online",
            "version": "1",
            "condition": {"broadcaster_user_id": "42"},
            "transport": {"method": "websocket", "session_id": "session-1"},
        }
        await helix.aclose()

    async def test_token_reused_until_expired(self):
        router = Router()
        router.add(OAUTH_TOKEN_URL, token_response())
        router.add(SUBSCRIPTIONS_URL, httpx.Response(202, json={"data": [{"id": "sub"}]}))
        helix = make_helix(router)

        await helix.subscribe("stream.online", {"broadcaster_user_id": "1"}, "s")
        await helix.subscribe("stream.offline", {"broadcaster_user_id": "1"}, "s")

        assert len(router.to(OAUTH_TOKEN_URL)) == 1

    async def test_unauthorized_refreshes_once(self):
        router = Router()
        router.add(OAUTH_TOKEN_URL, token_response("access-1"), token_response("access-2"))
        router.add(
            SUBSCRIPTIONS_URL,
            httpx.Response(401, json={"message": "invalid token"}),
            httpx.Response(202, json={"data": [{"id": "sub-1"}]}),
        )
        helix = make_helix(router)

        assert await helix.subscribe("stream.online", {"broadcaster_user_id": "1"}, "s") == "sub-1"
        assert router.to(SUBSCRIPTIONS_URL)[-1].headers["Authorization"] == "Bearer access-2"
        refresh = router.to(OAUTH_TOKEN_URL)[-1]
        assert b"refresh_token=refresh-2" in refresh.content

    async def test_existing_subscription(self):
        router = Router()
        router.add(OAUTH_TOKEN_URL, token_response())
        router.add(SUBSCRIPTIONS_URL, httpx.Response(409, json={"message": "exists"}))

        assert await make_helix(router).subscribe("stream.online", {}, "s") is None

    async def test_subscription_refused(self):
        router = Router()
        router.add(OAUTH_TOKEN_URL, token_response())
        router.add(SUBSCRIPTIONS_URL, httpx.Response(403, json={"message": "missing scope"}))

        with pytest.raises(SubscriptionError) as exc_info:
            await make_helix(router).subscribe("channel.chat.message", {}, "s")
        assert exc_info.value.status_code == 403
        assert exc_info.value.event_type == "channel.chat.message"

    async def test_refresh_token_rejected(self):
        router = Router()
        router.add(OAUTH_TOKEN_URL, httpx.Response(400, json={"message": "Invalid refresh token"}))

        with pytest.raises(TwitchApiError):
            await make_helix(router).subscribe("stream.online", {}, "s")


@pytest.mark.unit
class TestTwitchGqlClient:
    async def test_stream_lookup(self):
        router = Router()
        router.add(
            "https://gql.test/gql",
            httpx.Response(200, json={"data": {"user": user_node("42", "streamer", video_node("9"))}}),
        )
        gql = make_gql(router)

        user = await gql.get_stream_by_user("Streamer")

        assert user.live_video.broadcast_id == 9
        body = json.loads(router.requests[0].content)
        assert body["variables"] == {"login": "streamer"}
        assert router.requests[0].headers["Client-ID"] == "gql-client"
        await gql.aclose()

    async def test_unknown_user(self):
        router = Router()
        router.add("https://gql.test/gql", httpx.Response(200, json={"data": {"user": None}}))

        with pytest.raises(TwitchGqlError):
            await make_gql(router).get_stream_by_user("nobody")

    async def test_comments_page(self):
        router = Router()
        nodes = [comment_node("+2"), comment_node("hi")]
        router.add(
            "https://gql.test/gql",
            httpx.Response(200, json={"data": {"video": {"comments": connection(nodes, "c", True)}}}),
        )

        result = await make_gql(router).get_comments_by_video_and_cursor("9", "c-prev")

        assert result.page().next_cursor == "c-1"
        assert json.loads(router.requests[0].content)["variables"] == {
            "videoId": "9",
            "cursor": "c-prev",
        }

    async def test_missing_video(self):
        router = Router()
        router.add("https://gql.test/gql", httpx.Response(200, json={"data": {"video": None}}))
        gql = make_gql(router)

        assert await gql.get_video("9") is None
        with pytest.raises(TwitchGqlError):
            await gql.get_comments_by_video_and_cursor("9")

    async def test_graphql_errors(self):
        router = Router()
        router.add(
            "https://gql.test/gql",
            httpx.Response(200, json={"errors": [{"message": "service timeout"}]}),
        )

        with pytest.raises(TwitchGqlError):
            await make_gql(router).get_video("9")

    async def test_transient_failures_retried(self):
        router = Router()
        router.add(
            "https://gql.test/gql",
            httpx.Response(503),
            httpx.ConnectError("reset"),
            httpx.Response(200, json={"data": {"video": video_node("9")}}),
        )

        video = await make_gql(router).get_video("9")

        assert video.broadcast_id == 9
        assert len(router.requests) == 3

    async def test_retries_exhausted(self):
        router = Router()
        router.add("https://gql.test/gql", httpx.Response(502))

        with pytest.raises(httpx.HTTPStatusError):
            await make_gql(router, max_attempts=2).get_video("9")
        assert len(router.requests) == 2

    async def test_client_error_not_retried(self):
        router = Router()
        router.add("https://gql.test/gql", httpx.Response(400))

        with pytest.raises(httpx.HTTPStatusError):
            await make_gql(router).get_video("9")
        assert len(router.requests) == 1
