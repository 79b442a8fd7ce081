"""Per-connector descriptions, summary lines and derived evidence metrics.

Builtin connectors return vendor-shaped dicts; these helpers turn them into
the human-readable title, description and summary stored with the evidence,
and the small set of counters used to tag the evidence row. Unknown
connector types get a generic summary and no metrics.
"""

from typing import Any, Callable, Dict

DISPLAY_NAMES = {
    "okta": "Okta Identity",
    "github": "GitHub Security",
    "custom": "Custom Integration",
}

DESCRIPTIONS = {
    "okta": (
        "Identity and access management data from Okta including user directory, MFA "
        "status, application assignments, and security event logs."
    ),
    "github": (
        "DevSecOps evidence from GitHub including repository security settings, "
        "branch protection and Dependabot alerts."
    ),
}


def _num(data: Any, *path: str) -> Any:
    """Read a nested counter, treating anything missing as 0."""
    node = data
    for key in path:
        if not isinstance(node, dict):
            return 0
        node = node.get(key)
    if node is None:
        return 0
    return node


def display_name(connector_type: str) -> str:
    return DISPLAY_NAMES.get(connector_type, connector_type)


def describe(connector_type: str) -> str:
    return DESCRIPTIONS.get(connector_type, f"Evidence collected from {connector_type} integration.")


_SUMMARIES: Dict[str, Callable[[Dict[str, Any]], str]] = {
    "okta": lambda r: (
        f"Okta: {_num(r, 'users', 'total')} users ({_num(r, 'users', 'withMFA')} with MFA), "
        f"{_num(r, 'applications', 'total')} applications"
    ),
    "github": lambda r: (
        f"GitHub: {_num(r, 'repositories', 'total')} repos, "
        f"{_num(r, 'securityAlerts', 'total')} security alerts, "
        f"{_num(r, 'branchProtection', 'protected')} protected branches"
    ),
}


def summarize(connector_type: str, result: Dict[str, Any]) -> str:
    """One-line summary of a connector's sync result."""
    summary = _SUMMARIES.get(connector_type)
    if summary is None:
        return f"Collected data from {connector_type}"
    return summary(result or {})


def extract_metrics(connector_type: str, result: Any) -> Dict[str, Any]:
    """Domain counters used to tag evidence rows; empty for unknown types."""
    r = result if isinstance(result, dict) else {}

    if connector_type == "okta":
        return {
            "totalUsers": _num(r, "users", "total"),
            "usersWithMFA": _num(r, "users", "withMFA"),
            "usersWithoutMFA": _num(r, "users", "noMFA"),
            "applications": _num(r, "applications", "total"),
            "securityEvents": _num(r, "securityEvents", "total"),
        }
    if connector_type == "github":
        return {
            "repositories": _num(r, "repositories", "total"),
            "privateRepos": _num(r, "repositories", "private"),
            "protectedBranches": _num(r, "branchProtection", "protected"),
            "securityAlerts": _num(r, "securityAlerts", "total"),
            "criticalAlerts": _num(r, "securityAlerts", "critical"),
        }
    return {}
