"""SteamCMD integration: install-state inspection, output parsing and updates."""
