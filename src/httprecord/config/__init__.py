"""Configuration loading, schema validation and logging setup."""
