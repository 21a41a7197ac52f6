"""
Cache key composition and glob matching.

Every place that builds a namespaced or persisted key, or filters keys by
an invalidation pattern, goes through this module.
"""

import re
from typing import Iterable, List, Optional, Pattern

PERSIST_PREFIX = "persist:"
NAMESPACE_SEPARATOR = ":"


def namespaced_key(key: str, namespace: Optional[str] = None) -> str:
    """Return "<namespace>:<key>", or the bare key without a namespace"""
    return f"{namespace}{NAMESPACE_SEPARATOR}{key}" if namespace else key


def persisted_key(key: str, namespace: Optional[str] = None) -> str:
    """Key of the non-expiring copy, distinct from the TTL'd entry"""
    return f"{PERSIST_PREFIX}{namespaced_key(key, namespace)}"


def glob_to_regex(pattern: str) -> Pattern[str]:
    """
    Compile a glob pattern where "*" matches any run of characters.
    
    Every other character is literal. Use with fullmatch().
    """
    return re.compile(".*".join(re.escape(part) for part in pattern.split("*")))


def match_keys(keys: Iterable[str], pattern: Optional[str] = None) -> List[str]:
    """Filter keys by a glob pattern, or return them all when no pattern is given"""
    if not pattern:
        return list(keys)
    regex = glob_to_regex(pattern)
    return [key for key in keys if regex.fullmatch(key)]
