"""
Pterodactyl Update Monitor

Watches SS14 game servers hosted on a Pterodactyl panel, and when a newer
build is published drives the update, reinstall and restart of each
server, announcing the result on Discord.
"""

__version__ = "1.0.0"
