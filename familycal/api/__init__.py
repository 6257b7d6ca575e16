"""aiohttp JSON API for familycal."""
