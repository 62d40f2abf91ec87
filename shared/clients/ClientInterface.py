from abc import ABC, abstractmethod
from typing import Any

import httpx
from httpx._types import QueryParamTypes

from shared.errors import BackendRequestError, EmbeddingFailure, InvalidResponse, ProviderError, RateLimited
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig

# body fragments some providers send with 4xx/5xx instead of a clean 429
_RATE_LIMIT_MARKERS = ("resource_exhausted", "rate limit", "rate_limit", "too many requests", "quota")


class ClientInterface(ABC):
    """Base of every HTTP backend: document store, vector store, embedding and chat.

    Settings are read from ``<CLIENT_TYPE>_<ENGINE>_<KEY>`` variables and checked
    on construction. The httpx client only exists between boot() and close().
    """

    def __init__(self, helper_config: HelperConfig):
        self.logging = helper_config.get_logger()
        self._helper_config = helper_config
        self.timeout = helper_config.get_number_val(f"{self.get_client_type().upper()}_TIMEOUT", default=30.0)
        self._client: httpx.AsyncClient | None = None
        self.validate_full_configuration()

    ##########################################
    ############### CHECKER ##################
    ##########################################

    def validate_full_configuration(self) -> None:
        """Read every declared setting once so missing ones fail at construction.

        Raises:
            ConfigurationError: If a setting without default is unset or malformed.
        """
        for setting in self._get_required_config():
            self.get_config_val(raw_key=setting.env_key, default=setting.default, val_type=setting.val_type)

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def get_client_type(self) -> str:
        """Lower-case client type, e.g. "doc"."""
        return self._get_client_type().lower()

    @abstractmethod
    def _get_client_type(self) -> str:
        pass

    def get_engine_name(self) -> str:
        """Lower-case engine name, e.g. "mongo"."""
        return self._get_engine_name().lower()

    @abstractmethod
    def _get_engine_name(self) -> str:
        pass

    ################ CONFIG ##################
    @abstractmethod
    def _get_required_config(self) -> list[EnvConfig]:
        """Settings this engine reads, without the client prefix."""
        pass

    def _get_config_key_name(self, raw_key: str) -> str:
        # EMBED + OPENAI + API_KEY -> EMBED_OPENAI_API_KEY
        return "_".join([self.get_client_type(), self.get_engine_name(), raw_key]).upper()

    def get_config_val(self, raw_key: str, default: Any = None, val_type: str = "string") -> Any:
        """Read one engine setting through HelperConfig.

        Args:
            raw_key (str): Key without the client prefix, e.g. "BASE_URL".
            default (Any): Value used when the variable is unset; None makes it required.
            val_type (str): "string", "number" or "bool".

        Raises:
            ConfigurationError: If the setting is required but unset, or malformed.
            ValueError: If val_type is unknown.
        """
        readers = {
            "string": self._helper_config.get_string_val,
            "number": self._helper_config.get_number_val,
            "bool": self._helper_config.get_bool_val,
        }
        if val_type not in readers:
            raise ValueError(f"Unknown value type '{val_type}' for setting '{raw_key}' of {self.get_client_type()} client '{self.get_engine_name()}'.")
        return readers[val_type](self._get_config_key_name(raw_key), default=default)

    ################ AUTH ##################
    @abstractmethod
    def _get_auth_header(self) -> dict:
        """Headers authenticating every request; empty when the backend needs none."""
        pass

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_base_url(self) -> str:
        """Backend root URL, e.g. "https://my-index.svc.pinecone.io"."""
        pass

    @abstractmethod
    def _get_endpoint_healthcheck(self) -> str:
        """Path requested by do_healthcheck(), e.g. "/describe_index_stats"."""
        pass

    ##########################################
    ########### ERROR CLASSIFIER #############
    ##########################################

    def classify_failure(self, response: httpx.Response) -> EmbeddingFailure:
        """Map a non-2xx provider response onto the provider error taxonomy.

        Args:
            response (httpx.Response): The failed response.

        Returns:
            EmbeddingFailure: RateLimited for 429 or resource-exhaustion bodies,
                ProviderError for 5xx (retriable) and other 4xx (not retriable).
        """
        status = response.status_code
        body = response.text[:500]
        message = f"{self.get_engine_name()} request failed with status {status}: {body[:200]}"
        if status == 429 or any(marker in body.lower() for marker in _RATE_LIMIT_MARKERS):
            return RateLimited(message, engine=self.get_engine_name(), status_code=status)
        if status >= 500:
            return ProviderError(message, engine=self.get_engine_name(), status_code=status)
        return ProviderError(message, engine=self.get_engine_name(), status_code=status, retriable=False)

    def parse_json(self, response: httpx.Response) -> Any:
        """Decode a provider response body, raising InvalidResponse on malformed JSON."""
        try:
            return response.json()
        except ValueError as e:
            raise InvalidResponse(
                f"{self.get_engine_name()} returned a non-JSON body: {response.text[:200]}",
                engine=self.get_engine_name(),
                status_code=response.status_code,
            ) from e

    async def do_provider_request(self, method: str, endpoint: str, json: dict) -> Any:
        """Send a provider (embedding/chat) request and return its decoded JSON body.

        Transport errors and non-2xx statuses are normalised once, here, so that
        callers only ever see ProviderError, RateLimited or InvalidResponse.

        Raises:
            ProviderError: On transport errors and non-rate-limit failures.
            RateLimited: On HTTP 429 or a resource-exhaustion signal.
            InvalidResponse: On a malformed body.
        """
        try:
            response = await self.do_request(method=method, endpoint=endpoint, json=json)
        except httpx.TransportError as e:
            raise ProviderError(
                f"{self.get_engine_name()} transport error: {e}", engine=self.get_engine_name()
            ) from e
        if not response.is_success:
            failure = self.classify_failure(response)
            self.logging.error("%s", failure)
            raise failure
        return self.parse_json(response)

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_healthcheck(self) -> httpx.Response:
        """GET the healthcheck endpoint."""
        return await self.do_request(method="GET", endpoint=self._get_endpoint_healthcheck())

    async def check_health(self) -> None:
        """Raise unless the backend answers its healthcheck.

        Raises:
            BackendRequestError: On a non-2xx healthcheck response.
            httpx.TransportError: If the backend cannot be reached.
        """
        response = await self.do_healthcheck()
        if not response.is_success:
            raise BackendRequestError(
                f"healthcheck answered status {response.status_code}",
                status_code=response.status_code,
                url=str(response.request.url),
            )

    ##########################################
    ############ CORE REQUESTS ###############
    ##########################################

    async def boot(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        """Open the httpx client.

        Args:
            transport (httpx.AsyncBaseTransport | None): Replaces the network
                transport, tests pass an httpx.MockTransport.
        """
        self._client = httpx.AsyncClient(timeout=self.timeout, transport=transport)

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def do_request(
        self,
        method: str = "GET",
        json: dict | None = None,
        params: QueryParamTypes | None = None,
        endpoint: str = "",
        additional_headers: dict | None = None,
        raise_on_error: bool = False,
    ) -> httpx.Response:
        """Send one request to ``<base url><endpoint>`` with the auth headers.

        Args:
            method: HTTP verb.
            json: JSON body, omitted when None.
            params: Query string parameters.
            endpoint: Path below the base URL, the leading slash is optional.
            additional_headers: Merged over the auth headers.
            raise_on_error: Raise BackendRequestError instead of returning a non-2xx response.

        Raises:
            RuntimeError: If boot() was not called.
            BackendRequestError: On a non-2xx status with raise_on_error.
            httpx.TransportError: On network failures.
        """
        if self._client is None:
            raise RuntimeError(f"{self.get_client_type()} client '{self.get_engine_name()}' is not booted.")

        path = endpoint.strip().lstrip("/")
        url = self._get_base_url().rstrip("/") + (f"/{path}" if path else "")
        headers = {**self._get_auth_header(), **(additional_headers or {})}

        response = await self._client.request(
            method,
            url,
            headers=headers,
            params=params,
            json=json,
            timeout=self.timeout,
        )

        if raise_on_error and not response.is_success:
            self.logging.error("%s %s answered %d: %s", method, url, response.status_code, response.text[:500])
            raise BackendRequestError(
                f"{method} {url} failed with status {response.status_code}",
                status_code=response.status_code,
                url=url,
            )

        return response
