# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Workforce Client - read-only access to published roster shifts and employees
"""
import logging
import time
from datetime import date
from typing import Dict, Iterable, List, Optional

import requests

import config
from errors import ConfigurationError, RateLimitedError, WorkforceAPIError
from utils.logger import StructuredLogger
from utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)


class WorkforceClient:
    """Handles reads from the workforce (Employment Hero) API"""

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None,
                 session: Optional[requests.Session] = None, timeout: Optional[int] = None,
                 max_retries: Optional[int] = None, base_delay: Optional[float] = None,
                 max_delay: Optional[float] = None):
        self.base_url = (base_url if base_url is not None else config.WORKFORCE_API_URL).rstrip('/')
        api_key = api_key if api_key is not None else config.WORKFORCE_API_KEY
        if not self.base_url:
            raise ConfigurationError("WORKFORCE_API_URL is not set")
        if not api_key:
            raise ConfigurationError("WORKFORCE_API_KEY is not set")

        self.session = session or requests.Session()
        self.session.auth = (api_key, '')
        self.timeout = timeout or config.REQUEST_TIMEOUT
        self.structured_logger = StructuredLogger(__name__)

        self._fetch_employee = retry_with_backoff(
            max_retries=config.MAX_RETRIES if max_retries is None else max_retries,
            base_delay=config.BASE_DELAY if base_delay is None else base_delay,
            max_delay=config.MAX_DELAY if max_delay is None else max_delay,
            retry_on=(RateLimitedError, requests.exceptions.ConnectionError, requests.exceptions.Timeout)
        )(self._fetch_employee_once)

    def _get(self, path: str, params=None) -> requests.Response:
        url = f"{self.base_url}{path}"
        started = time.time()
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            self.structured_logger.log_api_call('GET', path, error=str(e))
            raise

        self.structured_logger.log_api_call(
            'GET', path, status_code=response.status_code,
            duration_ms=(time.time() - started) * 1000
        )
        return response

    def get_roster_shifts(self, from_date: date, to_date: date,
                          location_ids: Optional[Iterable[int]] = None) -> List[Dict]:
        """
        Published shifts between two dates (inclusive), optionally limited to
        an allow-list of locations

        Shifts with the excluded work type never leave this method.
        """
        params = [
            ('filter.SelectAllRoles', 'true'),
            ('filter.ShiftStatuses', 'published'),
            ('filter.fromDate', from_date.isoformat()),
            ('filter.toDate', to_date.isoformat()),
        ]
        for location_id in location_ids or []:
            params.append(('filter.selectedLocations', str(location_id)))

        response = self._get('/rostershift', params=params)
        if response.status_code == 429:
            raise RateLimitedError("Roster shift query was rate limited", status_code=429)
        if response.status_code != 200:
            raise WorkforceAPIError(
                f"Roster shift query failed: {response.status_code}", status_code=response.status_code
            )

        shifts = response.json() or []
        kept = [s for s in shifts if s.get('workTypeId') != config.EXCLUDED_WORK_TYPE_ID]

        excluded = len(shifts) - len(kept)
        if excluded:
            logger.info(f"Excluded {excluded} shifts with work type {config.EXCLUDED_WORK_TYPE_ID}")
        logger.info(f"📊 Retrieved {len(kept)} roster shifts ({from_date} to {to_date})")
        return kept

    def _fetch_employee_once(self, employee_id: str) -> Dict:
        response = self._get(f"/employee/unstructured/{employee_id}")

        if response.status_code == 429:
            raise RateLimitedError(f"Employee lookup {employee_id} was rate limited", status_code=429)
        if response.status_code != 200:
            raise WorkforceAPIError(
                f"Employee lookup {employee_id} failed: {response.status_code}",
                status_code=response.status_code
            )
        return response.json()

    def get_employee(self, employee_id: str) -> Dict:
        """
        Name parts and email for one employee

        Rate-limited and connection failures are retried with capped
        exponential backoff; any other failure is raised immediately.
        """
        data = self._fetch_employee(str(employee_id))
        return {
            'employee_id': str(employee_id),
            'first_name': (data.get('firstName') or '').strip(),
            'last_name': (data.get('surname') or data.get('lastName') or '').strip(),
            'email': (data.get('emailAddress') or data.get('email') or '').strip() or None,
        }
