import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import requests

from core.config import settings

logger = logging.getLogger(__name__)


class HostingClient:
    """Domain alias management on the hosting provider (Vercel REST API).

    HTTP errors propagate; there are no retries.
    """

    def __init__(self, api_url: Optional[str] = None, token: Optional[str] = None, team_id: Optional[str] = None, timeout: Optional[float] = None):
        self.api_url = (api_url or settings.HOSTING_API_URL).rstrip("/")
        self.token = token if token is not None else settings.HOSTING_API_TOKEN
        self.team_id = team_id if team_id is not None else settings.HOSTING_TEAM_ID
        self.timeout = timeout if timeout is not None else settings.HOSTING_TIMEOUT_SECONDS

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }

    def _params(self) -> Dict[str, str]:
        return {"teamId": self.team_id} if self.team_id else {}

    def create_domain_alias(self, domain: str, target: str) -> Dict[str, Any]:
        """Point ``domain`` at the deployment ``target``."""
        resp = requests.post(
            f"{self.api_url}/v2/deployments/{quote(target, safe='')}/aliases",
            json={"alias": domain},
            params=self._params(),
            headers=self._headers(),
            timeout=self.timeout,
        )
        resp.raise_for_status()
        logger.info(f"Alias created: {domain} -> {target}")
        return resp.json()

    def remove_domain_alias(self, domain: str) -> bool:
        """Remove the alias for ``domain``. An alias that is already gone counts as removed."""
        resp = requests.delete(
            f"{self.api_url}/v2/aliases/{quote(domain, safe='')}",
            params=self._params(),
            headers=self._headers(),
            timeout=self.timeout,
        )
        if resp.status_code == 404:
            logger.info(f"No alias found for {domain}, nothing to remove")
            return False
        resp.raise_for_status()
        logger.info(f"Alias removed: {domain}")
        return True
