"""HTTP-backed record retrieval: fetch, fallback cache and response decoding."""
