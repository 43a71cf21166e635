"""
Central constants for the SWIM agent mesh.

Single source of truth for capability tags, protocol method names and the
bounded defaults used when no configuration overrides them.
"""

# Network constants
DEFAULT_A2A_PORT = 8000
DEFAULT_HOST = "0.0.0.0"
LOCALHOST = "localhost"

# Endpoint schemes understood by the invoker
HTTP_SCHEMES = ("http", "https")
LOCAL_SCHEME = "local"

# A2A JSON-RPC methods
A2A_METHOD_INVOKE = "invoke"
A2A_METHOD_AGENT_CARD = "get_agent_card"

# Capability tags
CAPABILITY_FLIGHT_POSITION = "flight-position"
CAPABILITY_SURFACE_MOVEMENT = "surface-movement"
CAPABILITY_FLIGHT_PLAN = "flight-plan"
CAPABILITY_DOCUMENTATION = "documentation"
CAPABILITY_ADHERENCE = "adherence"

KNOWN_CAPABILITIES = (
    CAPABILITY_FLIGHT_POSITION,
    CAPABILITY_SURFACE_MOVEMENT,
    CAPABILITY_FLIGHT_PLAN,
    CAPABILITY_DOCUMENTATION,
    CAPABILITY_ADHERENCE,
)

# Built-in agents
ADHERENCE_AGENT_ID = "adherence-engine"

# Step execution defaults
DEFAULT_STEP_TIMEOUT_SECONDS = 30.0
DEFAULT_STEP_MAX_RETRIES = 1
MAX_STEP_RETRIES = 3
DEFAULT_RETRY_DELAY_SECONDS = 0.5
DEFAULT_PLAN_TIMEOUT_SECONDS = 120.0

# Default timeout values
DEFAULT_TIMEOUT_SECONDS = 30
DEFAULT_CONNECT_TIMEOUT = 10
HEALTH_CHECK_TIMEOUT = 10

# Circuit breaker defaults
CIRCUIT_BREAKER_FAILURE_THRESHOLD = 5
CIRCUIT_BREAKER_TIMEOUT = 30
CIRCUIT_BREAKER_HALF_OPEN_MAX_CALLS = 1

# Adherence analysis
EARTH_RADIUS_NM = 3440.065
DEFAULT_MATCH_WINDOW_SECONDS = 900
LATERAL_MINOR_NM = 2.0
LATERAL_MAJOR_NM = 10.0
VERTICAL_MINOR_FT = 500.0
VERTICAL_MAJOR_FT = 2000.0
TIMING_MINOR_SECONDS = 300.0
TIMING_MAJOR_SECONDS = 900.0

# Verdicts
VERDICT_ON_PLAN = "on-plan"
VERDICT_MINOR = "minor-deviation"
VERDICT_MAJOR = "major-deviation"
VERDICT_INSUFFICIENT = "insufficient-data"

# Event triggers
LANDING_STATUS_TOPIC = "status/DROPPED"
LANDING_REPORT_TOPIC = "reports/landing/{flight}"
LANDING_REPORT_TEMPLATE = "landing_report"
