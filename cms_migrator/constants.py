"""Shared constants for the CMS asset migration tool."""

# HTTP status codes
HTTP_OK = 200
HTTP_BAD_REQUEST = 400
HTTP_UNAUTHORIZED = 401
HTTP_FORBIDDEN = 403
HTTP_NOT_FOUND = 404
HTTP_CONFLICT = 409
HTTP_RATE_LIMIT = 429
HTTP_SERVER_ERROR_MIN = 500

REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})

# Source API
SOURCE_ACCEPT_VERSION = "1.0.0"
DEFAULT_PAGE_SIZE = 100
DEFAULT_PAGE_DELAY = 1.0

# Retry / backoff
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 5.0
DEFAULT_MAX_DELAY = 60.0
DEFAULT_UPLOAD_ATTEMPTS = 3
DEFAULT_UPLOAD_BASE_DELAY = 2.0

# Batching
DEFAULT_ITEM_CONCURRENCY = 2
DEFAULT_ITEM_BATCH_DELAY = 2.0
DEFAULT_IMAGE_CONCURRENCY = 3
DEFAULT_IMAGE_BATCH_DELAY = 0.5

# Downloads
DEFAULT_DOWNLOAD_TIMEOUT = 30.0
DEFAULT_MAX_IMAGE_BYTES = 50 * 1024 * 1024
DEFAULT_MAX_REDIRECTS = 5
DOWNLOAD_CHUNK_SIZE = 64 * 1024
DOWNLOAD_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

# Storage
DEFAULT_ROOT_PREFIX = "website"
DEFAULT_CACHE_CONTROL = "public, max-age=31536000"
DEFAULT_WEBP_QUALITY = 80
STORAGE_SCOPES = ["https://www.googleapis.com/auth/devstorage.read_write"]

# Values that appear in image fields but are not real references
PLACEHOLDER_VALUES = frozenset({"", "n/a", "na", "none", "null", "-"})

CONTENT_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "svg": "image/svg+xml",
    "bmp": "image/bmp",
    "tif": "image/tiff",
    "tiff": "image/tiff",
    "avif": "image/avif",
}

# Raster formats Pillow can re-encode as WebP
TRANSCODABLE_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "gif", "bmp", "tif", "tiff"})

DEFAULT_EXTENSION = "jpg"

REPORT_SCHEMA_VERSION = 1
