"""Resolve plugins: hooks that may answer a query before it leaves the server."""
