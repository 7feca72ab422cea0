"""Library defaults shared by the request handler and the storage helpers."""

MIB = 1024 * 1024
GIB = 1024 * MIB

DEFAULT_MAX_FILE_SIZE = 5 * MIB
DEFAULT_MAX_FILES = 3
DEFAULT_SIGNED_URL_EXPIRES_IN = 120  # seconds

DEFAULT_MULTIPART_PART_SIZE = 50 * MIB
DEFAULT_MULTIPART_PART_SIGNED_URL_EXPIRES_IN = 1500  # seconds
DEFAULT_MULTIPART_COMPLETE_SIGNED_URL_EXPIRES_IN = 1800  # seconds

# Largest object S3 accepts in a single PUT/POST
S3_SINGLE_PART_LIMIT = 5 * GIB

# Lifetime of URLs the server signs for its own calls to storage
STORAGE_REQUEST_EXPIRES_IN = 60  # seconds

DEFAULT_REGION = "us-east-1"
