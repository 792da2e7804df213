"""
HTTP client for OpenSearch / Elasticsearch compatible stores.

Provides the two calls searchmon needs (search and field mapping) over
urllib, with basic auth, TLS client configuration and failover across the
configured base URLs.
"""

import base64
import http.client
import json
import logging
import os
import socket
import ssl
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from ..errors import ConnectivityError, IndexNotFoundError, QueryTimeoutError, ResponseShapeError

load_dotenv()

logger = logging.getLogger("searchmon.store")


class SearchStoreClient:
    """Client for the search store REST API."""

    def __init__(
        self,
        urls: List[str],
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = 5.0,
        insecure_skip_verify: bool = False,
        tls_ca: Optional[str] = None,
        tls_cert: Optional[str] = None,
        tls_key: Optional[str] = None,
    ):
        """
        Initialize store client.

        Args:
            urls: Base URLs of the store nodes, tried in order on failure
            username: Basic auth user. If None, reads SEARCHMON_USERNAME env var.
            password: Basic auth password. If None, reads SEARCHMON_PASSWORD env var.
            timeout: Default request timeout in seconds
            insecure_skip_verify: Skip server certificate verification
            tls_ca, tls_cert, tls_key: Optional CA bundle and client certificate paths
        """
        if not urls:
            raise ValueError("at least one store URL is required")
        self.urls = [u.rstrip("/") for u in urls]
        self.username = username or os.getenv("SEARCHMON_USERNAME")
        self.password = password or os.getenv("SEARCHMON_PASSWORD")
        self.timeout = timeout
        self._ssl_context = self._create_ssl_context(insecure_skip_verify, tls_ca, tls_cert, tls_key)
        self._active = 0  # index of the last URL that answered

    @classmethod
    def from_config(cls, config) -> "SearchStoreClient":
        return cls(
            urls=config.urls,
            username=config.username,
            password=config.password,
            timeout=config.timeout,
            insecure_skip_verify=config.insecure_skip_verify,
            tls_ca=config.tls_ca,
            tls_cert=config.tls_cert,
            tls_key=config.tls_key,
        )

    @staticmethod
    def _create_ssl_context(
        insecure_skip_verify: bool,
        tls_ca: Optional[str],
        tls_cert: Optional[str],
        tls_key: Optional[str],
    ) -> ssl.SSLContext:
        try:
            ssl_context = ssl.create_default_context(cafile=tls_ca)
            if tls_cert:
                ssl_context.load_cert_chain(certfile=tls_cert, keyfile=tls_key)
        except (OSError, ssl.SSLError) as e:
            raise ConnectivityError(f"invalid TLS configuration: {e}") from e

        if insecure_skip_verify:
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE
        return ssl_context

    def _headers(self) -> Dict[str, str]:
        hdrs = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.username:
            creds = f"{self.username}:{self.password or ''}".encode("utf-8")
            hdrs["Authorization"] = "Basic " + base64.b64encode(creds).decode("ascii")
        return hdrs

    def _request(self, method: str, path: str, body: Optional[Dict[str, Any]] = None,
                 timeout: Optional[float] = None) -> Dict[str, Any]:
        """
        Send a request, failing over across the configured URLs.

        Raises:
            IndexNotFoundError: On 404 from the store
            ConnectivityError: On HTTP errors or when no URL is reachable
            QueryTimeoutError: On socket timeout
            ResponseShapeError: On a non-JSON response body
        """
        data = json.dumps(body).encode("utf-8") if body is not None else None
        timeout = timeout if timeout is not None else self.timeout
        last_error: Optional[Exception] = None

        for attempt in range(len(self.urls)):
            idx = (self._active + attempt) % len(self.urls)
            url = f"{self.urls[idx]}{path}"
            req = urllib.request.Request(url, data=data, headers=self._headers(), method=method)
            ssl_context = self._ssl_context if url.startswith("https://") else None

            try:
                with urllib.request.urlopen(req, timeout=timeout, context=ssl_context) as resp:
                    raw = resp.read()
            except urllib.error.HTTPError as e:
                if e.code >= 500:
                    logger.warning("store %s returned HTTP %s, trying next node", self.urls[idx], e.code)
                    last_error = e
                    continue
                detail = _error_reason(e)
                if e.code == 404:
                    raise IndexNotFoundError(f"{method} {path}: {detail}", status=404) from e
                raise ConnectivityError(f"{method} {path}: HTTP {e.code} {detail}", status=e.code) from e
            except (socket.timeout, TimeoutError) as e:
                raise QueryTimeoutError(f"{method} {path} timed out after {timeout}s") from e
            except urllib.error.URLError as e:
                if isinstance(e.reason, (socket.timeout, TimeoutError)):
                    raise QueryTimeoutError(f"{method} {path} timed out after {timeout}s") from e
                logger.debug("store %s unreachable: %s", self.urls[idx], e.reason)
                last_error = e
                continue
            except (ConnectionError, http.client.HTTPException, OSError) as e:
                # Includes failures while reading the body (IncompleteRead, SSL errors)
                logger.debug("store %s connection error: %s", self.urls[idx], e)
                last_error = ConnectivityError(f"{method} {path}: {e!r}")
                continue

            self._active = idx
            try:
                return json.loads(raw.decode("utf-8")) if raw else {}
            except ValueError as e:
                raise ResponseShapeError(f"{method} {path}: response is not JSON") from e

        raise ConnectivityError(f"no store reachable for {method} {path}: {last_error}")

    def search(self, index: str, body: Dict[str, Any], timeout: Optional[float] = None) -> Dict[str, Any]:
        """Run a search request against an index (or pattern)."""
        return self._request("POST", f"/{_quote_index(index)}/_search", body, timeout)

    def field_mapping(self, index: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        """Get the raw mapping of an index (or pattern)."""
        return self._request("GET", f"/{_quote_index(index)}/_mapping", timeout=timeout)


def _quote_index(index: str) -> str:
    return urllib.parse.quote(index, safe=",*")


def _error_reason(e: urllib.error.HTTPError) -> str:
    """Extract the store's error reason from an HTTP error body if possible."""
    try:
        payload = json.loads(e.read().decode("utf-8"))
        error = payload.get("error")
        if isinstance(error, dict):
            return error.get("reason") or error.get("type") or str(error)
        return str(error or payload)
    except Exception:
        return str(e.reason)
