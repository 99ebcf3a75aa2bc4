import logging
from dataclasses import dataclass
from typing import List, Optional

from ldap3 import Connection, Server, SUBTREE
from ldap3.core.exceptions import LDAPException
from ldap3.utils.conv import escape_filter_chars

from .errors import DirectoryError

logger = logging.getLogger(__name__)

USER_ATTRIBUTES = ["sAMAccountName", "distinguishedName", "displayName"]
GROUP_ATTRIBUTES = ["sAMAccountName", "distinguishedName", "cn"]
# LDAP_MATCHING_RULE_IN_CHAIN: walks nested group membership server-side
IN_CHAIN = "1.2.840.113556.1.4.1941"


@dataclass
class DirectoryUser:
    sam_account_name: str
    distinguished_name: str
    display_name: str = ""


@dataclass
class DirectoryGroup:
    name: str
    distinguished_name: str


def _first(value):
    if isinstance(value, (list, tuple)):
        return value[0] if value else ""
    return value or ""


class DirectoryClient:
    """Read-only Active Directory lookups. Use as a context manager."""

    def __init__(self, settings, connection=None):
        self.base_dn = settings.ad_base_dn
        self._settings = settings
        self.connection = connection

    def __enter__(self):
        if self.connection is None:
            s = self._settings
            s.require("ad_server", "ad_base_dn")
            try:
                server = Server(s.ad_server, use_ssl=s.ad_use_ssl)
                self.connection = Connection(
                    server,
                    user=s.ad_user or None,
                    password=s.ad_password or None,
                    auto_bind=True,
                )
            except LDAPException as e:
                raise DirectoryError(f"Could not bind to {s.ad_server}: {e}") from e
        return self

    def __exit__(self, exc_type, exc, tb):
        if self.connection is not None:
            self.connection.unbind()
        return False

    def _search(self, search_filter, attributes):
        try:
            self.connection.search(
                search_base=self.base_dn,
                search_filter=search_filter,
                search_scope=SUBTREE,
                attributes=attributes,
            )
        except LDAPException as e:
            raise DirectoryError(f"LDAP search {search_filter} failed: {e}") from e
        return [
            entry["attributes"]
            for entry in (self.connection.response or [])
            if entry.get("type") == "searchResEntry"
        ]

    def find_user(self, sam_account_name) -> Optional[DirectoryUser]:
        flt = (
            "(&(objectCategory=person)(objectClass=user)"
            f"(sAMAccountName={escape_filter_chars(sam_account_name)}))"
        )
        found = self._search(flt, USER_ATTRIBUTES)
        if not found:
            return None
        return _user(found[0])

    def find_group(self, name) -> Optional[DirectoryGroup]:
        value = escape_filter_chars(name)
        found = self._search(f"(&(objectClass=group)(|(sAMAccountName={value})(cn={value})))", GROUP_ATTRIBUTES)
        if not found:
            return None
        attrs = found[0]
        return DirectoryGroup(
            name=_first(attrs.get("sAMAccountName")) or _first(attrs.get("cn")),
            distinguished_name=_first(attrs.get("distinguishedName")),
        )

    def group_members(self, group: DirectoryGroup, recursive=False) -> List[DirectoryUser]:
        rule = f":{IN_CHAIN}:" if recursive else ""
        dn = escape_filter_chars(group.distinguished_name)
        flt = f"(&(objectCategory=person)(objectClass=user)(memberOf{rule}={dn}))"
        return [_user(attrs) for attrs in self._search(flt, USER_ATTRIBUTES)]


def _user(attrs):
    return DirectoryUser(
        sam_account_name=_first(attrs.get("sAMAccountName")),
        distinguished_name=_first(attrs.get("distinguishedName")),
        display_name=_first(attrs.get("displayName")),
    )
