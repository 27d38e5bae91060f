"""aiohttp request handlers."""
