import logging

import requests
from msal import ConfidentialClientApplication

from .config import GRAPH_SCOPE
from .errors import GraphError

logger = logging.getLogger(__name__)


def odata_literal(value):
    """Quote a string for use inside an OData $filter expression."""
    return "'" + str(value).replace("'", "''") + "'"


def acquire_token(settings):
    settings.require("tenant_id", "client_id", "client_secret")
    auth_app = ConfidentialClientApplication(
        client_id=settings.client_id,
        client_credential=settings.client_secret,
        authority=settings.authority,
    )
    token = auth_app.acquire_token_for_client(scopes=GRAPH_SCOPE)
    if "access_token" not in token:
        raise GraphError(
            f"Failed to acquire Graph access token: {token.get('error_description', token.get('error'))}"
        )
    return token["access_token"]


class GraphClient:
    """
    Thin Microsoft Graph REST client.

    Every request carries ConsistencyLevel: eventual so $search and the
    advanced $filter operators work against directory objects.
    """

    def __init__(self, token, base_url="https://graph.microsoft.com/v1.0", session=None):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
            "ConsistencyLevel": "eventual",
        }

    @classmethod
    def from_settings(cls, settings, session=None):
        return cls(acquire_token(settings), base_url=settings.graph_base_url, session=session)

    def _url(self, path):
        if path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _request(self, url, params=None, allow_missing=False):
        try:
            r = self.session.get(url, headers=self.headers, params=params)
        except requests.exceptions.RequestException as e:
            raise GraphError(f"Failed to reach Graph at {url}: {e}") from e
        if allow_missing and r.status_code == 404:
            return None
        if r.status_code == 403:
            raise GraphError(f"403 Forbidden fetching {url}: check permissions")
        if r.status_code >= 400:
            raise GraphError(f"Graph request failed: {r.status_code} {r.text}")
        return r.json()

    def get(self, path, params=None):
        """Fetch one object; None if Graph answers 404."""
        return self._request(self._url(path), params=params, allow_missing=True)

    def get_all(self, path, params=None):
        """Fetch a collection, following @odata.nextLink until it runs out."""
        url, items = self._url(path), []
        while url:
            data = self._request(url, params=params)
            items.extend(data.get("value", []))
            url = data.get("@odata.nextLink")
            # nextLink already carries the query string
            params = None
        logger.debug("%d item(s) from %s", len(items), path)
        return items

    def close(self):
        self.session.close()
