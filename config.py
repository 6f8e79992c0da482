# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Environment-based configuration for the academic schedule sync
"""
import os

# Environment Detection
ENVIRONMENT = os.environ.get('ENVIRONMENT', 'production')
DEBUG = ENVIRONMENT == 'development'

# Time zone of the university (week boundaries, calendar days, scheduler)
TIMEZONE = os.environ.get('TIMEZONE', 'Europe/Warsaw')

# Upstream (university schedule system)
UPSTREAM_BASE_URL = os.environ.get('UPSTREAM_BASE_URL', "https://wu.ans-nt.edu.pl")
AJAX_URL = f"{UPSTREAM_BASE_URL}/ppuz-stud-app/ledge/view/AJAX"
LOGIN_URL = (
    f"{UPSTREAM_BASE_URL}/ppuz-stud-app/ledge/view/stud.info.ListaAktualnosciView"
    "?action=security.authentication.ImapLogin"
)
UPSTREAM_LOGIN = os.environ.get('UPSTREAM_LOGIN', '')
UPSTREAM_PASSWORD = os.environ.get('UPSTREAM_PASSWORD', '')
USER_AGENT = os.environ.get(
    'USER_AGENT',
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/132.0.0.0 Safari/537.36"
)
REQUEST_TIMEOUT = int(os.environ.get('REQUEST_TIMEOUT', 30))
SESSION_COOKIE_NAME = 'JSESSIONID'

# Upstream exception classes meaning "log in again"
SESSION_EXPIRED_EXCEPTIONS = (
    'org.objectledge.web.mvc.security.LoginRequiredException',
    'java.lang.SecurityException',
)

# Upstream AJAX services
SCHEDULE_SERVICE = 'Planowanie'
SCHEDULE_METHOD = 'getUlozoneTerminyGrupy'
GROUP_TREE_METHOD = 'getGrupySemestralneSemestru'
GROUP_TREE_ROOT_ITEM = 'r0'
KEEPALIVE_SERVICE = 'KeepSession'
KEEPALIVE_METHOD = 'ping'

# Session Broker
SESSION_POLL_INTERVAL = float(os.environ.get('SESSION_POLL_INTERVAL', 0.5))
CREDENTIAL_FILE = os.environ.get('CREDENTIAL_FILE', '/data/session_cache.json')
CREDENTIAL_DOCUMENT_PATH = 'config/upstreamSession'

# Document store
DATA_FILE = os.environ.get('DATA_FILE', '/data/documents.json')
MAX_BATCH_OPERATIONS = 500
BATCH_CEILING = int(os.environ.get('BATCH_CEILING', 490))

# Store layout
DEAN_GROUPS_COLLECTION = 'deanGroups'
GROUP_DETAILS_COLLECTION = 'groupDetails'
SCHEDULES_COLLECTION = 'schedules'
CLASSES_SUBCOLLECTION = 'classes'
GROUP_TREE_DOCUMENT = 'config/deanGroupsTree'

# Semester calendar
WINTER_SEMESTER_START_MONTH = int(os.environ.get('WINTER_SEMESTER_START_MONTH', 10))
SUMMER_SEMESTER_START_MONTH = int(os.environ.get('SUMMER_SEMESTER_START_MONTH', 2))
SUMMER_SEMESTER_START_DAY = int(os.environ.get('SUMMER_SEMESTER_START_DAY', 15))
SUMMER_SEMESTER_END_MONTH = int(os.environ.get('SUMMER_SEMESTER_END_MONTH', 6))
WINTER_SEMESTER_BASE_ID = int(os.environ.get('WINTER_SEMESTER_BASE_ID', 90))
WINTER_SEMESTER_BASE_YEAR = int(os.environ.get('WINTER_SEMESTER_BASE_YEAR', 2025))

# Scan settings
MAX_EMPTY_WEEKS = int(os.environ.get('MAX_EMPTY_WEEKS', 3))
FAST_WEEKS_TO_SCAN = int(os.environ.get('FAST_WEEKS_TO_SCAN', 2))
FULL_WEEKS_TO_SCAN = int(os.environ.get('FULL_WEEKS_TO_SCAN', 25))
MAX_PARALLEL_GROUPS = int(os.environ.get('MAX_PARALLEL_GROUPS', 4))

# Scheduler
CURRENT_WEEK_INTERVAL_MIN = int(os.environ.get('CURRENT_WEEK_INTERVAL_MIN', 15))
SESSION_RENEW_INTERVAL_MIN = int(os.environ.get('SESSION_RENEW_INTERVAL_MIN', 15))
FAST_SCAN_INTERVAL_HOURS = int(os.environ.get('FAST_SCAN_INTERVAL_HOURS', 2))
FAST_SCAN_FIRST_HOUR = 7
FAST_SCAN_LAST_HOUR = 22
FULL_SCAN_TIME = os.environ.get('FULL_SCAN_TIME', '04:00')
DEAN_GROUPS_TIME = os.environ.get('DEAN_GROUPS_TIME', '01:00')

# Circuit Breaker Settings
CIRCUIT_BREAKER_FAIL_MAX = int(os.environ.get('CIRCUIT_BREAKER_FAIL_MAX', 3))
CIRCUIT_BREAKER_RESET_TIMEOUT = int(os.environ.get('CIRCUIT_BREAKER_RESET_TIMEOUT', 600))

# Retry Settings (store commits)
MAX_RETRIES = int(os.environ.get('MAX_RETRIES', 3))
BASE_DELAY = float(os.environ.get('BASE_DELAY', 1.0))

# Operator alerts
TELEGRAM_BOT_TOKEN = os.environ.get('TELEGRAM_BOT_TOKEN', '')
TELEGRAM_CHAT_ID = os.environ.get('TELEGRAM_CHAT_ID', '')
TELEGRAM_API_URL = 'https://api.telegram.org'

# Logging
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
STRUCTURED_LOGGING = os.environ.get('STRUCTURED_LOGGING', 'True').lower() == 'true'
SERVICE_NAME = 'schedule-sync'

# Sync Settings
DRY_RUN_MODE = os.environ.get('DRY_RUN_MODE', 'False').lower() == 'true'

# Development Settings
if DEBUG:
    LOG_LEVEL = 'DEBUG'
    DRY_RUN_MODE = True
    CURRENT_WEEK_INTERVAL_MIN = 1
