"""Cache key builders.

Keys are opaque strings to the cache; these helpers only keep them stable so
that equal requests share an entry and prefix invalidation stays predictable.
"""

import json
from typing import Any, Dict, Optional


def generate_key(prefix: str, params: Optional[Dict[str, Any]] = None) -> str:
    """Build ``<prefix>_<k1>:<json>|<k2>:<json>`` with params sorted by name.

    >>> generate_key("tools", {"limit": 12, "category": "bim"})
    'tools_category:"bim"|limit:12'
    """
    params = params or {}
    param_str = "|".join(
        f"{name}:{json.dumps(params[name], sort_keys=True, separators=(',', ':'), default=str)}"
        for name in sorted(params)
    )
    return f"{prefix}_{param_str}" if param_str else prefix


def namespaced_key(kind: str, *parts: Any, namespace: str = "tumuai:v1:") -> str:
    """Build ``<namespace><kind>:<part>:<part>...`` for shared stores."""
    return f"{namespace}{kind}:{':'.join(str(p) for p in parts)}"
