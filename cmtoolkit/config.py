import os
from dataclasses import dataclass

from dotenv import load_dotenv

from .errors import ConfigurationError

GRAPH_SCOPE = ["https://graph.microsoft.com/.default"]


def _env_bool(name, default):
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """
    Everything a command needs to reach SQL, the AdminService, AD and Graph.

    Built once per invocation and handed to each client; nothing reads the
    environment behind its back.
    """
    # ─── GRAPH ─────────────────────────────────────────────────────────────────
    tenant_id: str = ""
    client_id: str = ""
    client_secret: str = ""
    graph_api_version: str = "v1.0"
    # ─── SITE DATABASE ─────────────────────────────────────────────────────────
    sql_server: str = ""
    sql_database: str = ""
    sql_driver: str = "ODBC Driver 18 for SQL Server"
    sql_url: str = ""
    # ─── ADMINSERVICE ──────────────────────────────────────────────────────────
    site_server: str = ""
    cm_username: str = ""
    cm_password: str = ""
    verify_tls: bool = True
    domain: str = ""
    # ─── ACTIVE DIRECTORY ──────────────────────────────────────────────────────
    ad_server: str = ""
    ad_base_dn: str = ""
    ad_user: str = ""
    ad_password: str = ""
    ad_use_ssl: bool = False

    @classmethod
    def from_env(cls, dotenv=True):
        if dotenv:
            load_dotenv()
        return cls(
            tenant_id=os.getenv("AZURE_TENANT_ID", ""),
            client_id=os.getenv("AZURE_CLIENT_ID", ""),
            client_secret=os.getenv("AZURE_CLIENT_SECRET", ""),
            graph_api_version=os.getenv("GRAPH_API_VERSION", "v1.0"),
            sql_server=os.getenv("CM_SQL_SERVER", ""),
            sql_database=os.getenv("CM_SQL_DATABASE", ""),
            sql_driver=os.getenv("CM_SQL_DRIVER", "ODBC Driver 18 for SQL Server"),
            sql_url=os.getenv("CM_SQL_URL", ""),
            site_server=os.getenv("CM_SITE_SERVER", ""),
            cm_username=os.getenv("CM_USERNAME", ""),
            cm_password=os.getenv("CM_PASSWORD", ""),
            verify_tls=_env_bool("CM_VERIFY_TLS", True),
            domain=os.getenv("CM_DOMAIN", ""),
            ad_server=os.getenv("AD_SERVER", ""),
            ad_base_dn=os.getenv("AD_BASE_DN", ""),
            ad_user=os.getenv("AD_USER", ""),
            ad_password=os.getenv("AD_PASSWORD", ""),
            ad_use_ssl=_env_bool("AD_USE_SSL", False),
        )

    def require(self, *names):
        """Raise ConfigurationError for the first named setting that is empty."""
        for name in names:
            if not getattr(self, name):
                raise ConfigurationError(
                    f"Missing setting '{name}' (set {_ENV_NAMES.get(name, name.upper())})"
                )

    @property
    def authority(self):
        return f"https://login.microsoftonline.com/{self.tenant_id}"

    @property
    def graph_base_url(self):
        return f"https://graph.microsoft.com/{self.graph_api_version}"

    @property
    def adminservice_url(self):
        return f"https://{self.site_server}/AdminService/wmi"

    def database_url(self):
        if self.sql_url:
            return self.sql_url
        self.require("sql_server", "sql_database")
        driver = self.sql_driver.replace(" ", "+")
        return (
            f"mssql+pyodbc://@{self.sql_server}/{self.sql_database}"
            f"?driver={driver}&trusted_connection=yes"
        )


_ENV_NAMES = {
    "tenant_id": "AZURE_TENANT_ID",
    "client_id": "AZURE_CLIENT_ID",
    "client_secret": "AZURE_CLIENT_SECRET",
    "sql_server": "CM_SQL_SERVER",
    "sql_database": "CM_SQL_DATABASE",
    "site_server": "CM_SITE_SERVER",
    "cm_username": "CM_USERNAME",
    "cm_password": "CM_PASSWORD",
    "domain": "CM_DOMAIN",
    "ad_server": "AD_SERVER",
    "ad_base_dn": "AD_BASE_DN",
    "ad_user": "AD_USER",
    "ad_password": "AD_PASSWORD",
}

