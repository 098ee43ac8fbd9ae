#!/usr/bin/env python3
"""
Centralized constants for vulngate.

Limits, thresholds and defaults shared by the cache, matcher, sync and
policy layers live here so the numbers are defined exactly once.
"""

from datetime import timedelta

# Remote intelligence source
VULNERS_BASE_URL = "https://vulners.com"
DEFAULT_HTTP_TIMEOUT_SECONDS = 120
USER_AGENT_PRODUCT = "vulngate"

# Bulletin fields requested from the remote source on every lookup
BULLETIN_FIELDS = [
    "id",
    "title",
    "description",
    "type",
    "bulletinFamily",
    "cvss",
    "cvss2",
    "cvss3",
    "published",
    "modified",
    "href",
    "sourceHref",
    "cvelist",
    "epss",
    "references",
    "ai",
    "lastseen",
]

# Matching
# Page size for per-component online queries. Popular packages (openssl, linux)
# carry far more than a handful of advisories.
SEARCH_PAGE_SIZE = 100
OFFLINE_SEARCH_LIMIT = 20
DEFAULT_MATCH_CONCURRENCY = 1

# Identifier prefixes the enricher knows how to resolve
KNOWN_ID_PREFIXES = ("CVE-", "GO-")

# Offline cache
DELTA_SYNC_THRESHOLD = timedelta(hours=25)
DEFAULT_COLLECTIONS = ["cve"]
SQLITE_BUSY_TIMEOUT_MS = 5000
CACHE_FILE_MODE = 0o600
CACHE_DIR_MODE = 0o750
MAX_PAGINATION_LIMIT = 1000

# Summary
HIGH_EPSS_THRESHOLD = 0.1

# Configuration
ENV_PREFIX = "VULNGATE_"
CONFIG_DIR_NAME = ".vulngate"
CONFIG_FILE_NAME = "config.yaml"
DB_FILE_NAME = "vulngate.db"

# Logging
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
DEFAULT_LOG_FILE = "logs/vulngate.log"
