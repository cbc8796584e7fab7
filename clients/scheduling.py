# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Scheduling Client - Optomate REST API (adjustments, accounts) and OData
queries (appointments, identifiers, roster slots)
"""
import logging
import time
from datetime import datetime
from typing import Dict, List, Optional

import pytz
import requests

import config
from errors import ConfigurationError, SchedulingAPIError
from models import Identity
from utils.logger import StructuredLogger
from utils.slots import calculate_slots
from utils.timezone import parse_12h_minutes

logger = logging.getLogger(__name__)

# Cancelled, no-show and rebooked appointments
INACTIVE_APPOINTMENT_STATUSES = (6, 7, 9)


def odata_datetime(dt: datetime) -> str:
    """UTC timestamp in the form OData filters expect"""
    if dt.tzinfo is None:
        dt = pytz.UTC.localize(dt)
    return dt.astimezone(pytz.UTC).strftime('%Y-%m-%dT%H:%M:%SZ')


def _active_appointment_filters() -> List[str]:
    filters = ["APPOINTMENT_TYPE ne 'NA'"]
    filters.extend(f"STATUS ne {status}" for status in INACTIVE_APPOINTMENT_STATUSES)
    return filters


def _identity_from_search(data: Dict) -> Identity:
    history = data.get('workHistory') or []
    if isinstance(history, str):
        history = [h for h in history.split(',') if h]
    return Identity(
        id=int(data['optomId']),
        work_history=list(history),
        external_user_id=data.get('externalUserId'),
        email=data.get('email'),
    )


class SchedulingClient:
    """Handles reads and writes against the scheduling system"""

    def __init__(self, api_url: Optional[str] = None, api_token: Optional[str] = None,
                 odata_url: Optional[str] = None, odata_user: Optional[str] = None,
                 odata_password: Optional[str] = None, session: Optional[requests.Session] = None,
                 timeout: Optional[int] = None, dry_run: Optional[bool] = None):
        self.api_url = (api_url if api_url is not None else config.SCHEDULING_API_URL).rstrip('/')
        self.api_token = api_token if api_token is not None else config.SCHEDULING_API_TOKEN
        self.odata_url = (odata_url if odata_url is not None else config.SCHEDULING_ODATA_URL).rstrip('/')
        self.odata_auth = (
            odata_user if odata_user is not None else config.SCHEDULING_ODATA_USER,
            odata_password if odata_password is not None else config.SCHEDULING_ODATA_PASSWORD,
        )

        if not self.api_url:
            raise ConfigurationError("SCHEDULING_API_URL is not set")
        if not self.odata_url:
            raise ConfigurationError("SCHEDULING_ODATA_URL is not set")

        self.session = session or requests.Session()
        self.timeout = timeout or config.REQUEST_TIMEOUT
        self.dry_run = config.DRY_RUN_MODE if dry_run is None else dry_run
        self.structured_logger = StructuredLogger(__name__)

    # ------------------------------------------------------------------
    # transport
    # ------------------------------------------------------------------

    def _api_headers(self) -> Dict[str, str]:
        headers = {'Content-Type': 'application/json'}
        if self.api_token:
            headers['Authorization'] = f"Bearer {self.api_token}"
        return headers

    def _request(self, method: str, url: str, endpoint: str, **kwargs) -> requests.Response:
        started = time.time()
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            self.structured_logger.log_api_call(method, endpoint, error=str(e))
            raise SchedulingAPIError(f"{method} {endpoint} failed: {e}") from e

        self.structured_logger.log_api_call(
            method, endpoint, status_code=response.status_code,
            duration_ms=(time.time() - started) * 1000
        )
        return response

    def _api_call(self, method: str, path: str, body: Optional[Dict] = None) -> Dict:
        response = self._request(method, f"{self.api_url}{path}", path,
                                 headers=self._api_headers(), json=body)
        if response.status_code not in [200, 201]:
            raise SchedulingAPIError(
                f"{method} {path} failed: {response.status_code}",
                status_code=response.status_code, body=response.text
            )
        return response.json()

    def _odata_get(self, path: str, params: Optional[Dict] = None) -> Dict:
        response = self._request('GET', f"{self.odata_url}{path}", path.split('?')[0],
                                 auth=self.odata_auth, params=params,
                                 headers={'Content-Type': 'application/json'})
        if response.status_code != 200:
            raise SchedulingAPIError(
                f"OData query {path} failed: {response.status_code}",
                status_code=response.status_code, body=response.text
            )
        return response.json()

    # ------------------------------------------------------------------
    # roster adjustments
    # ------------------------------------------------------------------

    def post_adjustment(self, identity_id: int, adjust_data: Dict) -> bool:
        """Set one (date, branch, practitioner) roster entry active or inactive"""
        state = 'inactive' if adjust_data.get('INACTIVE') else 'active'
        if self.dry_run:
            logger.info(f"[DRY RUN] Would set {identity_id} {state} at "
                        f"{adjust_data.get('BRANCH_IDENTIFIER')} on {adjust_data.get('ADJUST_DATE')}")
            return False

        try:
            self._api_call('POST', '/api/appointments/appAdjust',
                           {'id': identity_id, 'adjust_data': adjust_data})
        except SchedulingAPIError as e:
            logger.error(f"❌ Failed to set {identity_id} {state}: {e}")
            return False

        logger.info(f"✅ Set {identity_id} {state} at {adjust_data.get('BRANCH_IDENTIFIER')} "
                    f"{adjust_data.get('ADJUST_START')}-{adjust_data.get('ADJUST_FINISH')}")
        return True

    # ------------------------------------------------------------------
    # identities
    # ------------------------------------------------------------------

    def _search(self, path: str, body: Dict) -> Optional[Identity]:
        try:
            result = self._api_call('POST', path, body)
        except SchedulingAPIError as e:
            if e.status_code == 404:
                return None
            raise
        data = result.get('data') or {}
        if result.get('success') and data.get('optomId'):
            return _identity_from_search(data)
        return None

    def search_by_external_id(self, external_id: str) -> Optional[Identity]:
        return self._search('/api/optometrists/searchByExternalId', {'externalUserId': external_id})

    def search_by_email(self, email: str) -> Optional[Identity]:
        return self._search('/api/optometrists/searchByEmail', {'email': email})

    def search_by_name(self, first_name: str, last_name: str) -> Optional[Identity]:
        return self._search('/api/optometrists/search', {'firstName': first_name, 'lastName': last_name})

    def update_identity(self, identity_id: int, external_user_id: Optional[str] = None,
                        email: Optional[str] = None) -> bool:
        if self.dry_run:
            logger.info(f"[DRY RUN] Would update identity {identity_id}")
            return False
        result = self._api_call('PATCH', f"/api/optometrist/{identity_id}",
                                {'externalUserId': external_user_id, 'email': email})
        return bool(result.get('success'))

    def add_work_history(self, identity_id: int, branch_code: str) -> bool:
        if self.dry_run:
            logger.info(f"[DRY RUN] Would add {branch_code} to work history of {identity_id}")
            return False
        result = self._api_call('POST', '/api/optometrists/optomWorkHistory',
                                {'optomId': identity_id, 'workedHistory': branch_code})
        return bool(result.get('success'))

    def create_user(self, body: Dict) -> Dict:
        """
        Submit an account creation

        Returns ``{'success': True, 'id': ...}`` or ``{'success': False,
        'error': message}``. Collision errors come back as a failed result
        rather than an exception so callers can inspect the message.
        """
        if self.dry_run:
            logger.info(f"[DRY RUN] Would create account {body.get('USERNAME')}")
            return {'success': False, 'error': 'dry run'}

        path = '/api/optometrists/createUser'
        response = self._request('POST', f"{self.api_url}{path}", path,
                                 headers=self._api_headers(), json=body)
        try:
            result = response.json()
        except ValueError:
            result = {}

        if response.status_code in [200, 201] and result.get('success'):
            return {'success': True, 'id': int(result['data']['id'])}

        details = result.get('details') or {}
        message = (
            (details.get('error') or {}).get('message')
            or result.get('error')
            or response.text
            or f"status {response.status_code}"
        )
        return {'success': False, 'error': str(message)}

    def count_identifier_prefix(self, prefix: str) -> int:
        """Number of existing identifiers containing ``prefix``"""
        result = self._odata_get('/Optometrists', {'$filter': f"contains(IDENTIFIER, '{prefix}')"})
        return len(result.get('value') or [])

    # ------------------------------------------------------------------
    # appointments
    # ------------------------------------------------------------------

    def has_active_appointments(self, identity_id: int, branch_code: str,
                                start: datetime, end: datetime) -> bool:
        """Whether a confirmed appointment starts inside [start, end). Raises on query failure."""
        filters = [
            f"OPTOMETRIST_ID eq {identity_id}",
            f"BRANCH_IDENTIFIER eq '{branch_code}'",
            f"STARTDATETIME ge {odata_datetime(start)}",
            f"STARTDATETIME lt {odata_datetime(end)}",
        ] + _active_appointment_filters()

        result = self._odata_get('/Appointments', {'$filter': ' and '.join(filters), '$top': '1'})
        return len(result.get('value') or []) > 0

    def _branch_day_filters(self, branch_code: str, start: datetime, end: datetime) -> List[str]:
        return [
            f"BRANCH_IDENTIFIER eq '{branch_code}'",
            f"STARTDATETIME ge {odata_datetime(start)}",
            f"STARTDATETIME lt {odata_datetime(end)}",
            f"OPTOMETRIST_ID ne {config.EXCLUDED_PRACTITIONER_ID}",
            "PATIENT_ID ne -1",
        ] + _active_appointment_filters()

    def count_appointments(self, branch_code: str, start: datetime, end: datetime) -> int:
        """Count-only mode"""
        params = {
            '$filter': ' and '.join(self._branch_day_filters(branch_code, start, end)),
            '$count': 'true',
            '$top': '0',
            '$select': 'BRANCH_IDENTIFIER',
        }
        result = self._odata_get('/Appointments', params)
        return int(result.get('@odata.count') or 0)

    def list_appointments(self, branch_code: str, start: datetime, end: datetime) -> List[Dict]:
        """Full-row mode: start and end of every confirmed appointment"""
        params = {
            '$filter': ' and '.join(self._branch_day_filters(branch_code, start, end)),
            '$select': 'STARTDATETIME,ENDDATETIME',
        }
        result = self._odata_get('/Appointments', params)
        return result.get('value') or []

    def get_roster_slots(self, identity_id: int, branch_code: str,
                         start: datetime, end: datetime) -> int:
        """Slots the scheduling system holds for one practitioner/branch/day"""
        adjust_filter = ' and '.join([
            f"AppAdjust/ADJUST_DATE ge {odata_datetime(start)}",
            f"AppAdjust/ADJUST_DATE lt {odata_datetime(end)}",
            f"AppAdjust/BRANCH_IDENTIFIER eq '{branch_code}'",
            "AppAdjust/INACTIVE eq false",
        ])
        result = self._odata_get(f"/Optometrist({identity_id})",
                                 {'$expand': 'AppAdjust', '$filter': adjust_filter})

        total = 0
        for adjust in result.get('AppAdjust') or []:
            if adjust.get('INACTIVE') or not adjust.get('ADJUST_START') or not adjust.get('ADJUST_FINISH'):
                continue
            try:
                start_min = parse_12h_minutes(adjust['ADJUST_START'])
                end_min = parse_12h_minutes(adjust['ADJUST_FINISH'])
            except ValueError:
                logger.warning(f"Unreadable adjustment times for {identity_id}: "
                               f"{adjust.get('ADJUST_START')} - {adjust.get('ADJUST_FINISH')}")
                continue
            if end_min > start_min:
                total += calculate_slots(end_min - start_min)
        return total
