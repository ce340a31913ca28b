"""
Resource API client - the contract the engine talks to, and an aiohttp
implementation of it for a Kubernetes API server.

Every call answers with an ApiResponse instead of raising on HTTP errors, so
callers can branch on documented status codes (404 on get, 409 on create,
415 on strategic merge) and raise ApiError for everything else.
"""

import base64
import inspect
import logging
import ssl
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import aiohttp
from kubernetes_asyncio.client import Configuration

from errors import ApiError, NotFoundError
from tree import get_path

logger = logging.getLogger(__name__)

JSON_PATCH = "application/json-patch+json"
MERGE_PATCH = "application/merge-patch+json"
STRATEGIC_MERGE_PATCH = "application/strategic-merge-patch+json"


@dataclass
class ApiResponse:
    """Status code and decoded body of one API call."""

    status_code: int
    body: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class ResourceClient(ABC):
    """
    Abstract client for one resource kind.

    Implementations must be safe to call repeatedly; headers added with
    add_header() apply to every later call made through the same client.
    """

    @abstractmethod
    def uri(
        self,
        name: Optional[str] = None,
        namespace: Optional[str] = None,
        status: bool = False,
    ) -> str:
        """Identifier of a resource (or of the collection when name is None)."""
        pass

    @abstractmethod
    async def get(self, name: str, namespace: Optional[str] = None) -> ApiResponse:
        pass

    @abstractmethod
    async def put(self, body: Dict[str, Any]) -> ApiResponse:
        pass

    @abstractmethod
    async def post(self, body: Dict[str, Any]) -> ApiResponse:
        pass

    @abstractmethod
    async def patch(
        self,
        name: str,
        namespace: Optional[str],
        body: Any,
        status: bool = False,
        headers: Optional[Dict[str, Optional[str]]] = None,
    ) -> ApiResponse:
        """Apply a JSON Patch (list of operations)."""
        pass

    @abstractmethod
    async def merge_patch(
        self,
        name: str,
        namespace: Optional[str],
        body: Any,
        status: bool = False,
        headers: Optional[Dict[str, Optional[str]]] = None,
    ) -> ApiResponse:
        """Apply a JSON merge patch (RFC 7386)."""
        pass

    @abstractmethod
    async def strategic_merge_patch(
        self,
        name: str,
        namespace: Optional[str],
        body: Any,
        status: bool = False,
        headers: Optional[Dict[str, Optional[str]]] = None,
    ) -> ApiResponse:
        pass

    @abstractmethod
    def add_header(self, key: str, value: Optional[str]) -> None:
        pass

    @abstractmethod
    async def request(self, path: str) -> ApiResponse:
        """GET an arbitrary API path, e.g. a secret of another kind."""
        pass


def api_base_path(api_version: str) -> str:
    """'v1' lives under /api, 'group/version' under /apis."""
    if "/" in api_version:
        return f"/apis/{api_version}"
    return f"/api/{api_version}"


class KubeResourceClient(ResourceClient):
    """
    ResourceClient backed by the Kubernetes REST API.

    Host, TLS and credentials come from a kubernetes_asyncio Configuration;
    requests go out over aiohttp. Opens a short-lived session per call unless
    a session is injected, in which case the caller owns its lifecycle.
    """

    def __init__(
        self,
        configuration: Configuration,
        api_version: str,
        plural: str,
        namespaced: bool = True,
        timeout: int = 30,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.configuration = configuration
        self.api_server = configuration.host.rstrip("/")
        self.api_version = api_version
        self.plural = plural
        self.namespaced = namespaced
        self.timeout = timeout
        self._session = session
        self._headers: Dict[str, Optional[str]] = {}

    @classmethod
    async def from_config(
        cls,
        kube_config: Any,
        api_version: str,
        plural: str,
        namespaced: bool = True,
    ) -> "KubeResourceClient":
        """
        Create a client from a KubeConfig.

        Args:
            kube_config: config.KubeConfig naming where settings are loaded from.
            api_version: "v1" or "group/version".
            plural: Plural resource name, e.g. "configmaps".
            namespaced: Whether the kind is namespace scoped.
        """
        configuration = await kube_config.load_client_configuration()
        return cls(
            configuration,
            api_version=api_version,
            plural=plural,
            namespaced=namespaced,
            timeout=kube_config.request_timeout,
        )

    def uri(
        self,
        name: Optional[str] = None,
        namespace: Optional[str] = None,
        status: bool = False,
    ) -> str:
        path = api_base_path(self.api_version)
        if self.namespaced and namespace:
            path += f"/namespaces/{namespace}"
        path += f"/{self.plural}"
        if name:
            path += f"/{name}"
            if status:
                path += "/status"
        return path

    def add_header(self, key: str, value: Optional[str]) -> None:
        self._headers[key] = value

    async def _auth_headers(self) -> Dict[str, str]:
        # auth_settings() is a coroutine in newer kubernetes-asyncio releases
        settings = self.configuration.auth_settings()
        if inspect.isawaitable(settings):
            settings = await settings
        return {
            auth["key"]: auth["value"]
            for auth in settings.values()
            if auth.get("in") == "header" and auth.get("value")
        }

    def _build_headers(
        self,
        auth: Dict[str, str],
        content_type: Optional[str] = None,
        extra: Optional[Dict[str, Optional[str]]] = None,
    ) -> Dict[str, str]:
        merged: Dict[str, Optional[str]] = {"Accept": "application/json"}
        merged.update(auth)
        if content_type:
            merged["Content-Type"] = content_type
        merged.update(self._headers)
        merged.update(extra or {})
        # None clears a header for this call
        return {k: v for k, v in merged.items() if v is not None}

    def _ssl_context(self) -> Any:
        configuration = self.configuration
        if not (
            configuration.ssl_ca_cert
            or configuration.cert_file
            or not configuration.verify_ssl
        ):
            return None
        ssl_context = ssl.create_default_context(cafile=configuration.ssl_ca_cert)
        if configuration.cert_file:
            ssl_context.load_cert_chain(
                configuration.cert_file, keyfile=configuration.key_file
            )
        if not configuration.verify_ssl:
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE
        return ssl_context

    async def _send(
        self,
        session: aiohttp.ClientSession,
        method: str,
        url: str,
        headers: Dict[str, str],
        body: Any,
    ) -> ApiResponse:
        kwargs: Dict[str, Any] = {"headers": headers}
        if body is not None:
            kwargs["json"] = body
        ssl_context = self._ssl_context()
        if ssl_context is not None:
            kwargs["ssl"] = ssl_context

        async with session.request(method, url, **kwargs) as resp:
            try:
                data = await resp.json(content_type=None)
            except ValueError:
                data = await resp.text()
            return ApiResponse(status_code=resp.status, body=data)

    async def _request(
        self,
        method: str,
        path: str,
        body: Any = None,
        content_type: Optional[str] = None,
        headers: Optional[Dict[str, Optional[str]]] = None,
    ) -> ApiResponse:
        url = f"{self.api_server}{path}"
        auth = await self._auth_headers()
        request_headers = self._build_headers(auth, content_type, headers)
        logger.debug(f"{method} {url}")

        if self._session is not None:
            response = await self._send(
                self._session, method, url, request_headers, body
            )
        else:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                response = await self._send(
                    session, method, url, request_headers, body
                )

        logger.debug(f"{method} {response.status_code} {url}")
        return response

    async def get(self, name: str, namespace: Optional[str] = None) -> ApiResponse:
        return await self._request("GET", self.uri(name, namespace))

    async def put(self, body: Dict[str, Any]) -> ApiResponse:
        name = get_path(body, ["metadata", "name"])
        namespace = get_path(body, ["metadata", "namespace"])
        return await self._request(
            "PUT", self.uri(name, namespace), body, "application/json"
        )

    async def post(self, body: Dict[str, Any]) -> ApiResponse:
        namespace = get_path(body, ["metadata", "namespace"])
        return await self._request(
            "POST", self.uri(None, namespace), body, "application/json"
        )

    async def patch(self, name, namespace, body, status=False, headers=None):
        return await self._request(
            "PATCH", self.uri(name, namespace, status), body, JSON_PATCH, headers
        )

    async def merge_patch(self, name, namespace, body, status=False, headers=None):
        return await self._request(
            "PATCH", self.uri(name, namespace, status), body, MERGE_PATCH, headers
        )

    async def strategic_merge_patch(
        self, name, namespace, body, status=False, headers=None
    ):
        return await self._request(
            "PATCH",
            self.uri(name, namespace, status),
            body,
            STRATEGIC_MERGE_PATCH,
            headers,
        )

    async def request(self, path: str) -> ApiResponse:
        return await self._request("GET", path)


async def get_secret_data(
    client: ResourceClient,
    name: str,
    key: str,
    namespace: str,
    as_bytes: bool = False,
) -> Any:
    """
    Read and base64-decode one key of a secret.

    Args:
        client: Any ResourceClient; only request() is used.
        name: Secret name.
        key: Key under the secret's data.
        namespace: Secret namespace.
        as_bytes: Return raw bytes instead of a decoded string.

    Raises:
        NotFoundError: If the key is not present in the secret.
        ApiError: If the secret could not be read.
    """
    res = await client.request(f"/api/v1/namespaces/{namespace}/secrets/{name}")
    if not res.ok:
        raise ApiError.from_response(res)

    encoded = get_path(res.body, ["data", key])
    if encoded is None:
        raise NotFoundError(
            message=f"key '{key}' in secret '{name}' from namespace '{namespace}' not found"
        )
    secret = base64.b64decode(encoded)
    return secret if as_bytes else secret.decode()
