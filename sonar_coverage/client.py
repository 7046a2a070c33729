"""SonarQube API client.

Usage:
    client = SonarClient(url="https://sonar.example.com", token="squ_admin")
    data   = client.get("/api/measures/search_history", {"component": "job:1"})
    client.post("/api/projects/create", {"project": "job:1", "name": "org/repo:main"})
"""

from typing import Any

import requests


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class SonarClientError(Exception):
    """Base exception for all client errors.

    ``status_code`` is the HTTP status of the failed response, or ``None`` when
    no response was received. ``message`` is the SonarQube error text.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class AuthenticationError(SonarClientError):
    """Raised on HTTP 401: invalid or expired token."""


class NotFoundError(SonarClientError):
    """Raised on HTTP 404: project, component, binding or resource not found."""


class NetworkError(SonarClientError):
    """Raised on connection timeout or unreachable server."""


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class SonarClient:
    """Thin wrapper around the SonarQube REST API."""

    def __init__(self, url: str, token: str, timeout: int = 30) -> None:
        self.base_url = url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._session = requests.Session()
        # SonarQube auth: token as username, empty password
        self._session.auth = (token, "")

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def get(self, endpoint: str, params: dict[str, Any] | None = None) -> dict:
        """Perform a single GET request and return the parsed JSON response.

        Raises:
            AuthenticationError: HTTP 401
            NotFoundError:       HTTP 404
            SonarClientError:    Any other non-2xx response
            NetworkError:        Timeout or connection failure
        """
        return self._request("GET", endpoint, params or {})

    def post(self, endpoint: str, params: dict[str, Any] | None = None) -> dict:
        """Perform a single POST request and return the parsed JSON response.

        SonarQube's write endpoints take their arguments as query parameters
        and often answer ``204 No Content``; an empty body yields ``{}``.
        Raises the same exceptions as :meth:`get`.
        """
        return self._request("POST", endpoint, params or {})

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _request(self, method: str, endpoint: str, params: dict[str, Any]) -> dict:
        url = f"{self.base_url}{endpoint}"
        try:
            response = self._session.request(
                method, url, params=params, timeout=self._timeout
            )
        except requests.exceptions.Timeout as exc:
            raise NetworkError(
                f"Request timed out after {self._timeout}s while contacting '{url}'"
            ) from exc
        except requests.exceptions.ConnectionError as exc:
            raise NetworkError(
                f"Unable to reach SonarQube server at '{self.base_url}'"
            ) from exc

        if response.status_code == 401:
            raise AuthenticationError(
                "Authentication failed, check that the admin token is valid and not expired.",
                status_code=401,
            )
        if response.status_code == 404:
            raise NotFoundError(
                _error_message(response) or f"Resource not found: {url}",
                status_code=404,
            )
        if not response.ok:
            raise SonarClientError(
                _error_message(response)
                or f"Unexpected response {response.status_code} from {url}: {response.text[:200]}",
                status_code=response.status_code,
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise SonarClientError(
                f"Invalid JSON in response from {url}: {response.text[:200]}",
                status_code=response.status_code,
            ) from exc


def _error_message(response: requests.Response) -> str:
    """Return the ``errors[].msg`` text of a SonarQube error body, or ``""``.

    SonarQube reports failures as ``{"errors": [{"msg": "..."}]}``.
    """
    try:
        body = response.json()
    except ValueError:
        return ""
    if not isinstance(body, dict):
        return ""
    messages = [e.get("msg", "") for e in body.get("errors", []) if isinstance(e, dict)]
    return "; ".join(m for m in messages if m)
