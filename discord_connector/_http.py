import logging
from typing import Any, Dict, Optional

import httpx
import msgspec

from ._cancel import Cancellation
from ._credentials import Credentials
from ._errors import AuthenticationError
from ._models import ConnectionInfo

__all__ = ('RestClient', 'DelayedRetry')


logger = logging.getLogger(__name__)

REST_BASE_URL = 'https://discord.com/api/'

GATEWAY_ENDPOINT = 'gateway'
BOT_GATEWAY_ENDPOINT = 'gateway/bot'


class DelayedRetry:
    """Retry policy waiting a linearly increasing delay between attempts.

    Attributes:
        attempts: How many times to retry after the first request failed.
        delay: Base delay in seconds, retry N waits N * delay.
    """

    __slots__ = ('attempts', 'delay')

    def __init__(self, attempts: int = 3, delay: float = 1.0) -> None:
        self.attempts = attempts
        self.delay = delay

    def delay_for(self, retry_count: int) -> float:
        return retry_count * self.delay

    @staticmethod
    def should_retry(status_code: Optional[int]) -> bool:
        """Whether a failure is worth retrying.

        None stands for a failure without a response (connection errors).
        """
        return status_code is None or status_code == 429 or status_code >= 500


class RestClient:
    """Minimal client for the REST endpoints needed to reach the gateway.

    Every request is sent with the credentials' Authorization header and a
    DiscordBot user agent. Failed requests are retried according to `retry`.
    """

    def __init__(
        self,
        credentials: Credentials,
        *,
        user_agent_url: str = 'www',
        version: str = '0.1a',
        api_version: int = 10,
        retry: Optional[DelayedRetry] = None,
        proxy: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.credentials = credentials
        self.api_version = api_version
        self.retry = retry or DelayedRetry()

        self._http = httpx.AsyncClient(
            base_url=REST_BASE_URL,
            headers={
                'User-Agent': f'DiscordBot ({user_agent_url}, {version})',
                'Authorization': credentials.authorization,
            },
            proxy=proxy,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, path: str, params: Dict[str, Any]) -> Optional[httpx.Response]:
        try:
            return await self._http.get(path, params=params)
        except httpx.TransportError as exc:
            logger.warning('GET %s failed: %s', path, exc)
            return None

    async def get(
        self,
        path: str,
        cancellation: Cancellation,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """GET a REST endpoint and return the decoded JSON body.

        Raises:
            AuthenticationError: The request still failed after retrying.
            ConnectionCancelled: `cancellation` fired first.
        """
        params = params or {}

        response = await cancellation.guard(self._request(path, params))

        retries = 1
        while response is None or response.is_error:
            status = response.status_code if response is not None else None

            if not self.retry.should_retry(status) or retries > self.retry.attempts:
                raise AuthenticationError(
                    f'GET {path} failed' + (f' with status {status}' if status else ''),
                    status,
                )

            delay = self.retry.delay_for(retries)
            logger.warning('Retrying GET %s in %.1fs (retry %s/%s)',
                           path, delay, retries, self.retry.attempts)
            await cancellation.guard(cancellation.sleep(delay))
            response = await cancellation.guard(self._request(path, params))
            retries += 1

        logger.debug('GET %s returned %s', path, response.status_code)
        try:
            return response.json()
        except ValueError as exc:
            raise AuthenticationError(f'GET {path} returned invalid JSON',
                                      response.status_code) from exc

    async def get_connection_info(
        self,
        cancellation: Cancellation,
        *,
        encoding: str = 'json',
    ) -> ConnectionInfo:
        """Fetch the gateway URL, and for bots the session start limit."""
        endpoint = GATEWAY_ENDPOINT if self.credentials.is_bearer else BOT_GATEWAY_ENDPOINT

        body = await self.get(
            endpoint, cancellation, {'v': self.api_version, 'encoding': encoding}
        )

        try:
            return msgspec.convert(body, ConnectionInfo)
        except msgspec.ValidationError as exc:
            raise AuthenticationError(f'Malformed {endpoint} response: {exc}') from exc
