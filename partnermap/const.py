DOMAIN = "partnermap"
VERSION = "0.4.0"

# Airtable endpoints
AIRTABLE_URL = "https://www.airtable.com"
AIRTABLE_API_URL = "https://api.airtable.com/v0"
AUTHORIZE_PATH = "/oauth2/v1/authorize"
TOKEN_PATH = "/oauth2/v1/token"
WHOAMI_PATH = "/meta/whoami"
DEFAULT_SCOPE = "data.records:read data.records:write user.email:read"
DEFAULT_TABLE_NAME = "Partners"

NOMINATIM_URL = "https://nominatim.openstreetmap.org/search"
STATE_BOUNDARIES_URL = (
    "https://raw.githubusercontent.com/PublicaMundi/MappingAPI/master/data/geojson/us-states.json"
)
TILE_URL = "https://{s}.tile.openstreetmap.org/{z}/{x}/{y}.png"
TILE_ATTRIBUTION = "&copy; OpenStreetMap contributors"

# HTTP
REQUEST_TIMEOUT = 30   # seconds, total per request
REQUEST_ATTEMPTS = 1   # failures are surfaced, never retried automatically
USER_AGENT = f"{DOMAIN}/{VERSION}"

# PKCE parameters (RFC 7636: verifier 43-128 chars from the unreserved set)
STATE_LENGTH = 32
CODE_VERIFIER_LENGTH = 128
CODE_VERIFIER_MIN_LENGTH = 43
CODE_VERIFIER_MAX_LENGTH = 128
CODE_CHALLENGE_LENGTH = 43    # base64url(SHA-256) without padding
MAX_AUTHORIZE_URL_LENGTH = 2048

# Persistent store keys (survive reloads)
KEY_AUTH_TOKEN = "auth_token"
KEY_REFRESH_TOKEN = "refresh_token"
KEY_USER_EMAIL = "user_email"
KEY_USER_NAME = "user_name"
KEY_USER_ID = "user_id"
PERSISTED_SESSION_KEYS = (KEY_AUTH_TOKEN, KEY_REFRESH_TOKEN, KEY_USER_EMAIL, KEY_USER_NAME, KEY_USER_ID)
RESTORE_REQUIRED_KEYS = (KEY_AUTH_TOKEN, KEY_USER_EMAIL, KEY_USER_ID)

# Session store keys (between authorization redirect and callback only)
KEY_OAUTH_STATE = "oauth_state"
KEY_OAUTH_CODE_VERIFIER = "oauth_code_verifier"

PLACEHOLDER_EMAIL = "authenticated_user@airtable.com"
GENERIC_USER_LABEL = "Authenticated User"

# Maps OAuth error codes from the authorization callback to user-facing text.
OAUTH_ERROR_MESSAGES: dict[str, str] = {
    "access_denied": (
        "Access was denied. Please try again and make sure to:\n\n"
        "1. Click 'Allow' to grant access\n"
        "2. Select the required base when prompted\n"
        "3. If you've reached the authorization limit, revoke old authorizations "
        "in your Airtable Account > Integrations"
    ),
    "invalid_request": "Invalid request. Please contact support if this persists.",
    "unauthorized_client": "Application not authorized. Please contact support.",
    "unsupported_response_type": "Unsupported response type. Please contact support.",
    "invalid_scope": "Invalid permissions requested. Please contact support.",
    "server_error": "Airtable server error. Please try again in a moment.",
    "temporarily_unavailable": "Airtable is temporarily unavailable. Please try again in a moment.",
}

LOGIN_IN_PROGRESS_MESSAGE = "Authentication already in progress. Please wait..."
STATE_MISMATCH_MESSAGE = "Security error: Invalid state parameter"
ACCESS_DENIED_MESSAGE = (
    "Access denied: You must grant access to the required base to use this application. "
    "Please try authenticating again and make sure to select the base during authorization."
)
REAUTH_MESSAGE = "Authentication required. Please log in again."

# Airtable field labels, internal attribute -> wire label.
MUTABLE_FIELD_LABELS: dict[str, str] = {
    "name": "Partner Name",
    "type": "Partner Type",
    "address": "Address",
    "description": "Description",
    "contact": "Contact",
    "email": "Contact Email",
    "phone": "Contact Phone",
    "website": "Website",
    "project_link": "Project Tracking Link",
    "notes": "Notes",
    "latitude": "Latitude",
    "longitude": "Longitude",
    "state": "State",
    "county": "County",
}
PROVENANCE_FIELD_LABELS: dict[str, str] = {
    "created_by_user_id": "Created By User ID",
    "created_by_email": "Created By Email",
    "date_added": "Date Added",
}

# Clustering: (max zoom inclusive, radius in px); zooms past the last step are unclustered.
CLUSTER_RADIUS_STEPS: tuple[tuple[int, int], ...] = (
    (6, 200),   # continental / state level
    (9, 100),   # regional
    (11, 50),   # metro
)
DISABLE_CLUSTERING_AT_ZOOM = 12
CLUSTER_SIZE_MEDIUM = 10
CLUSTER_SIZE_LARGE = 50
TILE_SIZE = 256

DEFAULT_CENTER = (39.8283, -98.5795)   # contiguous US
DEFAULT_ZOOM = 4

UNKNOWN_REGION = "UNKNOWN"

# Ordered rectangle table; the first covering box wins.
STATE_BOUNDING_BOXES: tuple[tuple[str, float, float, float, float], ...] = (
    # code, min_lat, max_lat, min_lng, max_lng
    ("CA", 32.5, 42.0, -124.5, -114.1),
    ("NY", 40.5, 45.0, -79.8, -71.8),
    ("TX", 25.8, 36.5, -106.6, -93.5),
    ("FL", 24.4, 31.0, -87.6, -80.0),
    ("IL", 36.9, 42.5, -91.5, -87.0),
    ("PA", 39.7, 42.3, -80.5, -74.7),
    ("OH", 38.4, 41.9, -84.8, -80.5),
    ("MI", 41.7, 48.3, -90.4, -82.4),
    ("GA", 30.3, 35.0, -85.6, -80.8),
    ("NC", 33.8, 36.6, -84.3, -75.4),
    ("WA", 45.5, 49.0, -124.8, -116.9),
)

# Layers
BASE_LAYER_ID = "partners"
BASE_LAYER_NAME = "Partners"
BASE_LAYER_Z_INDEX = 200
MAX_ADDITIONAL_LAYERS = 1

OVERLAY_CONFIGS: dict[str, dict] = {
    "public-libraries": {
        "name": "Public Libraries",
        "color": "#8B5CF6",
        "shape": "square",
        "z_index": 100,
    },
    "community-colleges": {
        "name": "Community Colleges",
        "color": "#F59E0B",
        "shape": "circle",
        "z_index": 110,
    },
    "civic-organizations": {
        "name": "Civic Organizations",
        "color": "#10B981",
        "shape": "diamond",
        "z_index": 120,
    },
    "news-organizations": {
        "name": "News Organizations",
        "color": "#EF4444",
        "shape": "triangle",
        "z_index": 130,
    },
}

# Ordered column aliases per logical overlay field; the first present column wins.
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "id": ("id", "ID", "Id", "objectid", "OBJECTID", "FID", "fscskey", "unitid"),
    "name": ("name", "Name", "NAME", "title", "LIBNAME", "INSTNM", "organization", "org_name"),
    "lat": ("lat", "latitude", "Latitude", "LAT", "LATITUDE", "y", "Y"),
    "lng": ("lng", "lon", "long", "longitude", "Longitude", "LON", "LONGITUDE", "x", "X"),
    "address": ("address", "Address", "ADDRESS", "street", "ADDRESS1", "addr"),
    "city": ("city", "City", "CITY"),
    "state": ("state", "State", "STATE", "STABR", "STABBR"),
    "website": ("website", "Website", "url", "URL", "WEBADDR"),
}

# Partner type -> (color, shape) for markers.
PARTNER_TYPE_STYLES: dict[str, tuple[str, str]] = {
    "Connector": ("#FF0064", "circle"),
    "Information Hub": ("#50F5C8", "diamond"),
    "Funder": ("#DCF500", "diamond"),
    "News Organization": ("#50F5C8", "diamond"),
    "Community College": ("#143CFF", "square"),
    "Library": ("#FF0064", "circle"),
    "Other": ("#FF0064", "triangle"),
}
