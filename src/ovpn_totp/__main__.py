"""Allow ``python -m ovpn_totp``."""

from ovpn_totp.cli import main

main()
