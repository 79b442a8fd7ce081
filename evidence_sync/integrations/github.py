"""GitHub builtin connector: repository security posture."""

from typing import Dict, Any, List, Optional
import logging

from pydantic import BaseModel, ConfigDict, Field

from evidence_sync.core.errors import TransportError
from evidence_sync.integrations.base import BaseConnector, ConnectionTestResult
from evidence_sync.integrations.registry import ConnectorRegistry

logger = logging.getLogger(__name__)

# Branch protection is checked on at most this many repositories per sync.
MAX_PROTECTION_CHECKS = 50


class GitHubConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    token: str
    organization: str
    api_base_url: str = Field(default="https://api.github.com", alias="apiBaseUrl")


@ConnectorRegistry.register("github")
class GitHubConnector(BaseConnector):
    """Collects repositories, branch protection and Dependabot alerts for an org."""

    config_model = GitHubConfig
    display_name = "GitHub Security"

    def auth_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.token}",
            "Accept": "application/vnd.github+json",
        }

    def _url(self, path: str) -> str:
        return f"{self.config.api_base_url.rstrip('/')}{path}"

    async def test_connection(self) -> ConnectionTestResult:
        """Test connection by reading the configured organization."""
        try:
            response = await self.make_api_request("GET", self._url(f"/orgs/{self.config.organization}"))
        except Exception as e:
            logger.error(f"GitHub connection test failed: {e}")
            return ConnectionTestResult(success=False, message=str(e))

        org = response.json()
        return ConnectionTestResult(
            success=True,
            message=f"Connected to GitHub organization {org.get('login', self.config.organization)}",
            details={"repoCount": org.get("public_repos", 0) + org.get("total_private_repos", 0)},
        )

    async def sync(self) -> Dict[str, Any]:
        errors: List[str] = []
        org = self.config.organization

        repos: List[Dict[str, Any]] = []
        async for repo in self.paginate_api_results(self._url(f"/orgs/{org}/repos")):
            repos.append(repo)

        protected = 0
        for repo in repos[:MAX_PROTECTION_CHECKS]:
            if await self._is_branch_protected(repo, errors):
                protected += 1

        alerts = await self._get_dependabot_alerts(errors)

        logger.info(f"GitHub sync complete: {len(repos)} repos, {len(alerts)} open alerts")

        return {
            "collectedAt": self.collected_at(),
            "repositories": {
                "total": len(repos),
                "private": sum(1 for r in repos if r.get("private")),
                "archived": sum(1 for r in repos if r.get("archived")),
                "items": [
                    {
                        "name": r.get("full_name") or r.get("name"),
                        "private": bool(r.get("private")),
                        "defaultBranch": r.get("default_branch"),
                    }
                    for r in repos[:100]
                ],
            },
            "branchProtection": {
                "checked": min(len(repos), MAX_PROTECTION_CHECKS),
                "protected": protected,
                "unprotected": min(len(repos), MAX_PROTECTION_CHECKS) - protected,
            },
            "securityAlerts": {
                "total": len(alerts),
                "critical": self._count_severity(alerts, "critical"),
                "high": self._count_severity(alerts, "high"),
            },
            "errors": errors,
        }

    async def _is_branch_protected(self, repo: Dict[str, Any], errors: List[str]) -> bool:
        branch = repo.get("default_branch") or "main"
        url = self._url(f"/repos/{repo.get('full_name')}/branches/{branch}/protection")
        try:
            await self.make_api_request("GET", url)
            return True
        except TransportError as e:
            if e.status_code != 404:
                errors.append(f"{repo.get('full_name')}: {e}")
            return False

    async def _get_dependabot_alerts(self, errors: List[str]) -> List[Dict[str, Any]]:
        url = self._url(f"/orgs/{self.config.organization}/dependabot/alerts")
        try:
            response = await self.make_api_request("GET", url, params={"state": "open", "per_page": 100})
        except TransportError as e:
            errors.append(f"dependabot alerts: {e}")
            return []
        data = response.json()
        return data if isinstance(data, list) else []

    @staticmethod
    def _count_severity(alerts: List[Dict[str, Any]], severity: str) -> int:
        count = 0
        for alert in alerts:
            advisory: Optional[Dict[str, Any]] = alert.get("security_advisory") or {}
            if advisory.get("severity") == severity:
                count += 1
        return count
