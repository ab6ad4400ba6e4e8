"""ovpn-totp — TOTP second factor for the OpenVPN admin panel."""

__version__ = "0.1.0"
