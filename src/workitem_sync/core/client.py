import logging
import threading
from typing import Any

import requests

from ..config import Config
from ..errors import (
    NotFoundError,
    RateLimitedError,
    RemoteEndpointError,
    RemoteError,
    RemoteWriteConflict,
    TransientRemoteError,
)

logger = logging.getLogger(__name__)

API_VERSION = "7.0"
# Azure DevOps caps workitemsbatch / WIQL result pages at 200 / 20000 ids
MAX_WIQL_RESULTS = 20000


class AzureDevOpsClient:
    """Thin REST client for Azure DevOps work item tracking.

    Every HTTP failure is translated into the sync error taxonomy so callers
    never see ``requests`` exceptions.
    """

    def __init__(self, config: Config):
        self.config = config
        self._thread_local = threading.local()
        self.api_url = self._get_api_url()

    @property
    def session(self) -> requests.Session:
        """The current thread's session."""
        return self._get_session()

    def _get_api_url(self) -> str:
        return (
            f"{self.config.base_url.rstrip('/')}/"
            f"{self.config.organization}/{self.config.project}/_apis"
        )

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        # PAT auth: empty user name, token as password
        session.auth = ("", self.config.pat)
        session.verify = not self.config.insecure
        session.headers.update({"Accept": "application/json"})
        return session

    def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: Any = None,
        content_type: str = "application/json",
        params: dict[str, Any] | None = None,
    ) -> Any:
        """
        Make a REST call and return the decoded JSON body.
        """
        url = f"{self.api_url}/{path.lstrip('/')}"
        query = {"api-version": API_VERSION, **(params or {})}
        headers = {"Content-Type": content_type}
        try:
            response = self._get_session().request(
                method,
                url,
                params=query,
                json=json_body,
                headers=headers,
                timeout=self.config.timeout_seconds,
            )
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise TransientRemoteError(
                f"{method} {path} failed: {exc}"
            ) from exc
        except requests.RequestException as exc:
            raise RemoteError(f"{method} {path} failed: {exc}") from exc

        self._raise_for_status(response, method, path)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteError(
                f"{method} {path} returned a non-JSON body: {response.text[:200]}"
            ) from exc

    @staticmethod
    def _raise_for_status(
        response: requests.Response, method: str, path: str
    ) -> None:
        status = response.status_code
        if status < 400:
            return

        message = f"{method} {path} returned HTTP {status}"
        match status:
            case 404:
                raise NotFoundError(message)
            case 429:
                retry_after = response.headers.get("Retry-After")
                try:
                    delay = float(retry_after) if retry_after else None
                except ValueError:
                    delay = None
                raise RateLimitedError(message, retry_after=delay)
            case 401 | 403:
                raise RemoteEndpointError(
                    f"{message}: check AZURE_DEVOPS_PAT permissions"
                )
            case 409 | 412:
                raise RemoteWriteConflict(message)
            case _ if status >= 500:
                raise TransientRemoteError(message)
            case _:
                raise RemoteError(f"{message}: {response.text[:200]}")

    def query_ids(self, wiql: str) -> list[int]:
        """
        Run a WIQL query and return the matching work item ids.
        """
        result = self._request(
            "POST",
            "wit/wiql",
            json_body={"query": wiql},
            params={"$top": MAX_WIQL_RESULTS},
        )
        return [int(item["id"]) for item in (result or {}).get("workItems", [])]

    def get_work_item(self, item_id: int) -> dict[str, Any]:
        """
        Get one work item with all its fields.

        Returns:
            Dict with keys: id, rev, fields, url

        Raises:
            NotFoundError: If the work item does not exist (or was deleted).
        """
        return self._request("GET", f"wit/workitems/{item_id}")

    def update_work_item(
        self, item_id: int, operations: list[dict[str, Any]]
    ) -> dict[str, Any]:
        """
        Apply a JSON-patch document to an existing work item.

        Raises:
            RemoteWriteConflict: If a ``test /rev`` operation failed.
        """
        return self._request(
            "PATCH",
            f"wit/workitems/{item_id}",
            json_body=operations,
            content_type="application/json-patch+json",
        )

    def create_work_item(
        self, item_type: str, operations: list[dict[str, Any]]
    ) -> dict[str, Any]:
        """
        Create a work item of *item_type* from a JSON-patch document.
        """
        return self._request(
            "POST",
            f"wit/workitems/${item_type}",
            json_body=operations,
            content_type="application/json-patch+json",
        )

    def validate_connection(self) -> None:
        """
        Cheap authenticated call used to fail fast on bad credentials.
        """
        self._request("GET", "wit/workitemtypes")
