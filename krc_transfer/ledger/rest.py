"""
Kaspa REST API client.

Used as the poll signal's balance source: the public REST API answers
balance and transaction-count queries without a node subscription.
"""
import logging
import urllib.parse
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..exceptions import LedgerError


def _address_path(address: str, resource: str) -> str:
    return "/addresses/" + urllib.parse.quote(address, safe=":") + "/" + resource


def validate_https_url(name: str, url: str) -> None:
    """
    Require https unless the host is local.

    Raises:
        ValueError: If the URL uses another scheme on a non-local host
    """
    parsed = urllib.parse.urlparse(url)
    # Check if it's a localhost or 127.0.0.1 address (with or without port)
    netloc_parts = parsed.netloc.split(':')
    host = netloc_parts[0] if netloc_parts else ''
    is_local = host in ('localhost', '127.0.0.1')
    if parsed.scheme != 'https' and not is_local:
        raise ValueError(f"{name} must use https:// for security (got: {parsed.scheme}://)")


class KaspaRestApi:
    """
    Minimal client for the Kaspa REST API.

    Usage:
        api = KaspaRestApi("https://api.kaspa.org")
        balance = api.get_balance("kaspa:qq...")
    """

    def __init__(
        self,
        base_url: str,
        retry_count: int = 3,
        timeout: int = 10,
        logger: Optional[logging.Logger] = None,
    ):
        validate_https_url("rest_url", base_url)
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)

        # Setup HTTP session with retries
        self.session = requests.Session()
        retries = Retry(
            total=retry_count,
            backoff_factor=0.5,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
            raise_on_status=False,
        )
        self.session.mount("http://", HTTPAdapter(max_retries=retries))
        self.session.mount("https://", HTTPAdapter(max_retries=retries))

    def _get(self, path: str) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            self.logger.error(f"Kaspa REST request failed: {e}")
            raise LedgerError(f"Kaspa REST request failed: {e}")

        try:
            result = response.json()
        except ValueError as e:
            raise LedgerError(f"Invalid JSON from Kaspa REST API: {e}")
        if not isinstance(result, dict):
            raise LedgerError(f"Unexpected Kaspa REST response: {result!r}")
        return result

    def get_balance(self, address: str) -> int:
        """
        Spendable balance of an address in sompi.

        Raises:
            LedgerError: On transport errors or a malformed response
        """
        result = self._get(_address_path(address, "balance"))
        if "balance" not in result:
            raise LedgerError(f"Missing balance in Kaspa REST response: {result}")
        return int(result["balance"])

    def get_transaction_count(self, address: str) -> int:
        """
        Number of transactions that touched an address.

        Raises:
            LedgerError: On transport errors or a malformed response
        """
        result = self._get(_address_path(address, "transactions-count"))
        if "total" not in result:
            raise LedgerError(f"Missing total in Kaspa REST response: {result}")
        return int(result["total"])

    def close(self) -> None:
        self.session.close()
