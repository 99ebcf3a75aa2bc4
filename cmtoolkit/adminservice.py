import logging

import requests
from requests_ntlm import HttpNtlmAuth

from .errors import AdminServiceError
from .graph import odata_literal

logger = logging.getLogger(__name__)

__all__ = ["AdminServiceClient", "odata_literal"]


def _key(key):
    """OData key segment; a mapping gives a composite key, Prop=value,..."""
    if isinstance(key, dict):
        return ",".join(f"{name}={_key(value)}" for name, value in key.items())
    if isinstance(key, int):
        return str(key)
    return odata_literal(key)


class AdminServiceClient:
    """
    Configuration Manager AdminService client for the WMI route.

    Instances come back as plain dicts with their WMI property names. Lazy
    properties (templates, XML blobs) are only populated by get(), not by
    query().
    """

    def __init__(self, base_url, auth=None, verify=True, session=None):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        if auth is not None:
            self.session.auth = auth
        self.verify = verify
        self.headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    @classmethod
    def from_settings(cls, settings, session=None):
        settings.require("site_server", "cm_username", "cm_password")
        auth = HttpNtlmAuth(settings.cm_username, settings.cm_password)
        return cls(settings.adminservice_url, auth=auth, verify=settings.verify_tls, session=session)

    def _send(self, method, url, params=None, body=None, allow_missing=False):
        logger.debug("%s %s %s", method, url, params or "")
        try:
            response = self.session.request(
                method=method,
                url=url,
                headers=self.headers,
                params=params,
                json=body,
                verify=self.verify,
            )
        except requests.exceptions.RequestException as e:
            raise AdminServiceError(f"Failed to reach AdminService at {url}: {e}") from e
        if allow_missing and response.status_code == 404:
            return None
        if response.status_code == 403:
            raise AdminServiceError(f"403 Forbidden for {url}: check the account's ConfigMgr role")
        if response.status_code >= 400:
            raise AdminServiceError(
                f"Status [{response.status_code}]\tReason [{response.reason or ''}] {response.text}"
            )
        if not response.content:
            return {}
        return response.json()

    def query(self, class_name, filter=None, select=None):
        params = {}
        if filter:
            params["$filter"] = filter
        if select:
            params["$select"] = ",".join(select)
        url, items = f"{self.base_url}/{class_name}", []
        while url:
            data = self._send("GET", url, params=params or None)
            items.extend(data.get("value", []))
            url = data.get("@odata.nextLink")
            params = None
        return items

    def get(self, class_name, key):
        data = self._send("GET", f"{self.base_url}/{class_name}({_key(key)})", allow_missing=True)
        if not data:
            return None
        value = data.get("value", data)
        if isinstance(value, list):
            return value[0] if value else None
        return value

    def create(self, class_name, properties):
        data = self._send("POST", f"{self.base_url}/{class_name}", body=properties)
        value = data.get("value", data)
        if isinstance(value, list):
            if not value:
                raise AdminServiceError(f"AdminService returned no {class_name} instance after create")
            return value[0]
        return value

    def update(self, class_name, key, properties):
        return self._send("PUT", f"{self.base_url}/{class_name}({_key(key)})", body=properties)

    def invoke(self, class_name, method, parameters=None):
        """Call a static WMI method, e.g. SMS_ScheduleMethods.ReadFromString."""
        return self._send("POST", f"{self.base_url}/{class_name}.{method}", body=parameters or {})

    def close(self):
        self.session.close()
