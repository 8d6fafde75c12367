"""
X (Twitter) posting clients.

TwitterPostingClient posts through tweepy (v2 tweets, v1.1 media upload).
DryRunPostingClient logs the message and returns a synthetic id.
"""

import asyncio
import io
import logging
import time
from typing import Any, Dict, Optional

import requests
import tweepy

from ..config import BotConfig
from ..core.exceptions import (
    AuthenticationError,
    PublishError,
    RemoteRateLimitError,
    TransportError,
)
from ..core.interfaces import FormattedMessage, PostingClient

logger = logging.getLogger(__name__)

MAX_TWEET_LENGTH = 280


class TwitterPostingClient(PostingClient):
    """Posts tweets with OAuth 1.0a user context."""

    def __init__(self, config: BotConfig):
        self.config = config
        self._client: Optional[tweepy.Client] = None
        self._api: Optional[tweepy.API] = None

    def _get_client(self) -> tweepy.Client:
        if self._client is None:
            self._client = tweepy.Client(
                consumer_key=self.config.twitter_api_key,
                consumer_secret=self.config.twitter_api_secret,
                access_token=self.config.twitter_access_token,
                access_token_secret=self.config.twitter_access_token_secret,
            )
        return self._client

    def _get_api(self) -> tweepy.API:
        if self._api is None:
            auth = tweepy.OAuth1UserHandler(
                self.config.twitter_api_key,
                self.config.twitter_api_secret,
                self.config.twitter_access_token,
                self.config.twitter_access_token_secret,
            )
            self._api = tweepy.API(auth)
        return self._api

    def _post_sync(self, message: FormattedMessage) -> str:
        media_ids = None
        if message.image:
            media = self._get_api().media_upload(filename="sale.png", file=io.BytesIO(message.image))
            media_ids = [media.media_id_string]
            logger.info(f"Uploaded image: media_id={media.media_id_string}")

        response = self._get_client().create_tweet(text=message.text, media_ids=media_ids)
        return str(response.data["id"])

    async def post(self, message: FormattedMessage) -> str:
        """Post a tweet and return its id. Raises a PublishError subclass on failure."""
        if not message.text.strip():
            raise PublishError("Tweet content cannot be empty")
        if len(message.text) > MAX_TWEET_LENGTH:
            raise PublishError(f"Tweet too long: {len(message.text)} characters (max {MAX_TWEET_LENGTH})")

        logger.info(f"Posting tweet: \"{message.text[:50]}...\"{' with image' if message.image else ''}")

        try:
            return await asyncio.to_thread(self._post_sync, message)
        except (tweepy.Unauthorized, tweepy.Forbidden) as e:
            raise AuthenticationError(f"X rejected credentials: {e}") from e
        except tweepy.TooManyRequests as e:
            raise RemoteRateLimitError(f"X rate limit hit: {e}") from e
        except (tweepy.TweepyException, requests.RequestException) as e:
            raise TransportError(f"X request failed: {e}") from e

    async def test_connection(self) -> Dict[str, Any]:
        """Verify credentials by fetching the authenticated user."""
        try:
            response = await asyncio.to_thread(self._get_client().get_me)
            user = response.data
            logger.info(f"Twitter API connection successful - authenticated as @{user.username}")
            return {"success": True, "username": user.username, "id": str(user.id)}
        except (tweepy.TweepyException, requests.RequestException) as e:
            logger.error(f"Twitter API connection failed: {e}")
            return {"success": False, "error": str(e)}


class DryRunPostingClient(PostingClient):
    """Logs tweets instead of posting them."""

    def __init__(self):
        self.posted: list = []

    async def post(self, message: FormattedMessage) -> str:
        tweet_id = f"dry-run-{int(time.time() * 1000)}-{len(self.posted)}"
        self.posted.append(message)
        logger.info(f"[DRY RUN] Would post tweet {tweet_id}:\n{message.text}")
        return tweet_id

    async def test_connection(self) -> Dict[str, Any]:
        return {"success": True, "username": "dry-run", "id": "0"}
