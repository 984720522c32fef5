"""
Version Discovery
-----------------
Resolves product codes to the concrete API version segments used in
every versioned path.
"""

from dataclasses import dataclass
from typing import Any, Dict

from core.errors import ConfigurationError

VERSIONS_PATH = "/d2l/api/versions/"

# Learning Platform and Learning Environment
REQUIRED_PRODUCTS = ("lp", "le")


@dataclass(frozen=True)
class ApiVersions:
    """Latest supported version per product, fixed for a client's lifetime."""
    lp: str
    le: str

    def as_dict(self) -> Dict[str, str]:
        return {"lp": self.lp, "le": self.le}


def parse_versions(payload: Any) -> ApiVersions:
    """
    Build ApiVersions from the versions endpoint payload.

    The payload is a list of ``{"ProductCode": ..., "LatestVersion": ...}``
    records; products other than lp and le are ignored.
    """
    if not isinstance(payload, list):
        raise ConfigurationError(
            "Unexpected version discovery payload",
            details={"type": type(payload).__name__}
        )

    found: Dict[str, str] = {}
    for entry in payload:
        if not isinstance(entry, dict):
            continue
        code = entry.get("ProductCode")
        version = entry.get("LatestVersion")
        if code in REQUIRED_PRODUCTS and isinstance(version, str) and version:
            found[code] = version

    missing = [code for code in REQUIRED_PRODUCTS if code not in found]
    if missing:
        raise ConfigurationError(
            f"Version discovery did not report product(s): {', '.join(missing)}",
            details={"missing": missing}
        )

    return ApiVersions(lp=found["lp"], le=found["le"])
