"""httprecord: a DNS server answering TXT, A and AAAA records from HTTP endpoints."""

# Re-export the plugins subpackage so dotted paths like 'httprecord.plugins.*'
# work with tooling that traverses attributes instead of using importlib.
from . import plugins as plugins
