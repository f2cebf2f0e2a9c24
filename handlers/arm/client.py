# ================================================================
# File     : client.py
# Purpose  : Azure Resource Manager read-only client
# Notes    : GET/POST (query endpoints only) + pagination + retries.
#            No write operations are ever issued.
#            - Auto-refresh token on 401
#            - 429 honours Retry-After, at most MAX_THROTTLE_RETRIES times
#            - Proactive refresh if token expires in <5 minutes
# ================================================================

import time
import getpass
from typing import Any, Dict, List, Optional

import msal
import requests

from core.utils import fncPrintMessage, fncRetry, fncMask

ARM_ROOT = "https://management.azure.com"
ARM_SCOPE = ["https://management.azure.com/.default"]
SUBSCRIPTIONS_API = "2022-12-01"
MAX_THROTTLE_RETRIES = 5


class ArmRequestError(Exception):
    """Raised when ARM answers with a non-retryable error status."""

    def __init__(self, status: int, message: str):
        super().__init__(f"ARM request failed with status {status}: {message}")
        self.status = status


class ArmClient:
    def __init__(
        self,
        tenant_id: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        authority: str = "https://login.microsoftonline.com",
        interactive: bool = True,
    ):
        if interactive:
            if not tenant_id:
                tenant_id = input("Enter Tenant ID: ").strip()
            if not client_id:
                client_id = input("Enter Application (Client) ID: ").strip()
            if not client_secret:
                fncPrintMessage("No client secret configured; it is only kept in memory for this run.", "warn")
                client_secret = getpass.getpass("Enter Client Secret (input hidden): ").strip()

        if not all([tenant_id, client_id, client_secret]):
            raise ValueError("tenant_id, client_id and client_secret are required")

        self.tenant_id = tenant_id
        self.client_id = client_id
        self.authority = f"{authority.rstrip('/')}/{tenant_id}"

        fncPrintMessage(f"Initialising ARM (read-only) client for app {fncMask(client_id)}...", "info")

        self.app = msal.ConfidentialClientApplication(
            client_id=client_id,
            client_credential=client_secret,
            authority=self.authority,
        )
        self.session = requests.Session()

        self.token: str = ""
        self._token_expires_on: int = 0  # epoch seconds
        self._set_token(self._acquire_token())

        fncPrintMessage("ArmClient initialised (read-only).", "success")

    # ---------- Token helpers ----------

    def _acquire_token(self) -> Dict[str, Any]:
        """Acquire a token using MSAL (cache first, then client credentials)."""
        fncPrintMessage("Requesting ARM access token...", "debug")
        result = self.app.acquire_token_silent(ARM_SCOPE, account=None)
        if not result:
            result = self.app.acquire_token_for_client(scopes=ARM_SCOPE)
        if "access_token" not in result:
            reason = result.get("error_description", "Unknown error")
            fncPrintMessage(f"MSAL authentication failed: {reason}", "error")
            raise ArmRequestError(401, reason)
        return result

    def _set_token(self, msal_result: Dict[str, Any]) -> None:
        self.token = msal_result["access_token"]
        try:
            self._token_expires_on = int(msal_result.get("expires_on") or 0)
        except (TypeError, ValueError):
            self._token_expires_on = 0
        if not self._token_expires_on:
            self._token_expires_on = int(time.time()) + int(msal_result.get("expires_in", 3600))

    def _ensure_fresh_token(self) -> None:
        if int(time.time()) >= (self._token_expires_on - 300):
            fncPrintMessage("Refreshing access token (nearing expiry)...", "debug")
            self._set_token(self._acquire_token())

    def _auth_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    # ---------- HTTP handling ----------

    def _send(self, method: str, url: str, params=None, body=None) -> requests.Response:
        return self.session.request(method, url, headers=self._auth_headers(), params=params, json=body, timeout=120)

    def _request(self, method: str, url: str, params: Optional[Dict[str, Any]] = None,
                 body: Optional[Dict[str, Any]] = None, _refreshed: bool = False, _throttled: int = 0) -> Dict[str, Any]:
        self._ensure_fresh_token()
        resp = self._send(method, url, params, body)
        status = resp.status_code

        if status == 200:
            return resp.json()

        if status == 204:
            return {}

        # Rate limit: ARM and Cost Management both send Retry-After
        if status == 429:
            if _throttled >= MAX_THROTTLE_RETRIES:
                fncPrintMessage(f"Still throttled after {_throttled} retries, giving up on {url}", "error")
                raise ArmRequestError(status, "Too many requests (throttled)")
            retry_after = int(resp.headers.get("Retry-After", resp.headers.get("x-ms-ratelimit-microsoft.costmanagement-entity-retry-after", 10)))
            fncPrintMessage(f"Throttled by ARM. Sleeping for {retry_after}s...", "warn")
            time.sleep(retry_after)
            return self._request(method, url, params, body, _refreshed, _throttled + 1)

        if status == 401 and not _refreshed:
            fncPrintMessage("Access token rejected, attempting refresh.", "warn")
            self._set_token(self._acquire_token())
            return self._request(method, url, params, body, _refreshed=True, _throttled=_throttled)

        if status >= 500:
            # raised as a plain exception so fncRetry tries again
            raise RuntimeError(f"ARM server error [{status}] for {url}")

        message = resp.text
        try:
            message = (resp.json().get("error") or {}).get("message") or message
        except ValueError:
            pass
        fncPrintMessage(f"ARM API error [{status}] -> {message}", "error")
        raise ArmRequestError(status, message)

    @staticmethod
    def _url(path: str) -> str:
        if path.startswith("http"):
            return path
        return f"{ARM_ROOT}/{path.strip().lstrip('/')}"

    # ---------- Public API ----------

    def get(self, path: str, api_version: Optional[str] = None, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Single GET. api_version is added to params when given."""
        url = self._url(path)
        params = dict(params or {})
        if api_version:
            params["api-version"] = api_version
        fncPrintMessage(f"GET {url}", "debug")
        return fncRetry(lambda: self._request("GET", url, params=params), exceptions=(RuntimeError, requests.ConnectionError))

    def get_all(self, path: str, api_version: Optional[str] = None, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        Follow nextLink until exhausted and return the flattened `value` items.
        Example: client.get_all(f"subscriptions/{sid}/providers/Microsoft.Compute/virtualMachines", "2024-03-01")
        """
        data = self.get(path, api_version, params)
        if "value" not in data:
            return [data] if data else []

        items: List[Dict[str, Any]] = list(data.get("value") or [])
        next_link = data.get("nextLink")
        while next_link:
            fncPrintMessage(f"Following nextLink -> {next_link}", "debug")
            page = fncRetry(lambda: self._request("GET", next_link), exceptions=(RuntimeError, requests.ConnectionError))
            items.extend(page.get("value") or [])
            next_link = page.get("nextLink")
        return items

    def post(self, path: str, body: Dict[str, Any], api_version: Optional[str] = None) -> Dict[str, Any]:
        """POST to a read-only query endpoint (Cost Management, Resource Graph)."""
        url = self._url(path)
        params = {"api-version": api_version} if api_version else None
        fncPrintMessage(f"POST {url}", "debug")
        return fncRetry(lambda: self._request("POST", url, params=params, body=body), exceptions=(RuntimeError, requests.ConnectionError))

    def post_all(self, path: str, body: Dict[str, Any], api_version: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        POST with paging. Cost Management pages via properties.nextLink,
        Resource Graph via $skipToken in the request options.
        Returns the raw page bodies in order.
        """
        pages = [self.post(path, body, api_version)]
        while True:
            last = pages[-1]
            next_link = (last.get("properties") or {}).get("nextLink")
            skip_token = last.get("$skipToken")
            if next_link:
                fncPrintMessage(f"Following nextLink -> {next_link}", "debug")
                pages.append(fncRetry(lambda: self._request("POST", next_link, body=body), exceptions=(RuntimeError, requests.ConnectionError)))
            elif skip_token:
                paged = dict(body)
                paged["options"] = {**(body.get("options") or {}), "$skipToken": skip_token}
                pages.append(self.post(path, paged, api_version))
            else:
                return pages

    def list_subscriptions(self) -> List[Dict[str, Any]]:
        subs = self.get_all("subscriptions", SUBSCRIPTIONS_API)
        return [
            {"subscriptionId": s.get("subscriptionId"), "displayName": s.get("displayName"), "state": s.get("state")}
            for s in subs
            if s.get("state", "Enabled") == "Enabled"
        ]
