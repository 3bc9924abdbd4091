"""DNS listener and query dispatch for httprecord."""
