# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Environment-based configuration for Roster Sync
"""
import os

# Environment Detection
ENVIRONMENT = os.environ.get('ENVIRONMENT', 'production')
DEBUG = ENVIRONMENT == 'development'

# Database
DATABASE_URL = os.environ.get('DATABASE_URL', 'sqlite:///roster.sqlite')

# "Today" and sync windows are evaluated in this zone
REFERENCE_TIMEZONE = os.environ.get('REFERENCE_TIMEZONE', 'Australia/Sydney')

# Workforce (Employment Hero) API
WORKFORCE_API_URL = os.environ.get('WORKFORCE_API_URL', '')
WORKFORCE_API_KEY = os.environ.get('WORKFORCE_API_KEY', '')
EXCLUDED_WORK_TYPE_ID = int(os.environ.get('EXCLUDED_WORK_TYPE_ID', 472663))

# Scheduling (Optomate) API
SCHEDULING_API_URL = os.environ.get('SCHEDULING_API_URL', '')
SCHEDULING_API_TOKEN = os.environ.get('SCHEDULING_API_TOKEN', '')
SCHEDULING_ODATA_URL = os.environ.get('SCHEDULING_ODATA_URL', '')
SCHEDULING_ODATA_USER = os.environ.get('SCHEDULING_ODATA_USER', '')
SCHEDULING_ODATA_PASSWORD = os.environ.get('SCHEDULING_ODATA_PASSWORD', '')
# Placeholder practitioner left out of branch appointment totals
EXCLUDED_PRACTITIONER_ID = int(os.environ.get('EXCLUDED_PRACTITIONER_ID', 164))

# HTTP
REQUEST_TIMEOUT = int(os.environ.get('REQUEST_TIMEOUT', 30))

# Sync Settings
DRY_RUN_MODE = os.environ.get('DRY_RUN_MODE', 'False').lower() == 'true'
RETENTION_DAYS = int(os.environ.get('RETENTION_DAYS', 90))
STORE_SYNC_DAYS = int(os.environ.get('STORE_SYNC_DAYS', 56))

# Change Processing
CHANGE_BATCH_SIZE = int(os.environ.get('CHANGE_BATCH_SIZE', 8))
CHANGE_BATCH_DELAY = float(os.environ.get('CHANGE_BATCH_DELAY', 1.0))
SETTLE_DELAY = float(os.environ.get('SETTLE_DELAY', 1.0))
VERIFY_DELAY = float(os.environ.get('VERIFY_DELAY', 0.5))
CONFLICT_CHECK_FAIL_OPEN = os.environ.get('CONFLICT_CHECK_FAIL_OPEN', 'True').lower() == 'true'

# Account Creation
ACCOUNT_CREATE_MAX_ATTEMPTS = int(os.environ.get('ACCOUNT_CREATE_MAX_ATTEMPTS', 20))
USERNAME_START_SUFFIX = int(os.environ.get('USERNAME_START_SUFFIX', 25))

# Employee Lookups
EMPLOYEE_LOOKUP_BATCH_SIZE = int(os.environ.get('EMPLOYEE_LOOKUP_BATCH_SIZE', 5))
EMPLOYEE_LOOKUP_DELAY = float(os.environ.get('EMPLOYEE_LOOKUP_DELAY', 0.5))

# Appointment Counts
APPOINTMENT_COUNT_CONCURRENCY = int(os.environ.get('APPOINTMENT_COUNT_CONCURRENCY', 3))
APPOINTMENT_COUNT_DELAY = float(os.environ.get('APPOINTMENT_COUNT_DELAY', 0.2))

# Retry Settings
MAX_RETRIES = int(os.environ.get('MAX_RETRIES', 3))
BASE_DELAY = float(os.environ.get('BASE_DELAY', 1.0))
MAX_DELAY = float(os.environ.get('MAX_DELAY', 30.0))

# Cache Settings
CACHE_TTL_HOURS = int(os.environ.get('CACHE_TTL_HOURS', 24))

# Logging
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
STRUCTURED_LOGGING = os.environ.get('STRUCTURED_LOGGING', 'False').lower() == 'true'

# Development Settings
if DEBUG:
    LOG_LEVEL = 'DEBUG'
    DRY_RUN_MODE = True
