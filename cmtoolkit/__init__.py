"""Admin helpers for Configuration Manager, Active Directory and Intune."""

__version__ = "0.1.0"
