from __future__ import annotations

VERSION = "6.7.9-22102024"

DEFAULT_ECHOSTS = "localhost,host.docker.internal"
DEFAULT_ECPORT = "2640"

MAX_HOSTNAMES = 10

DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_TRY_COUNT = 6
DEFAULT_TRY_DELAY = 10.0
DEFAULT_BUFFER_SIZE = 65536

# path-length bound + header allowance
MAX_PATH_LENGTH = 4096
MAX_LINE_LENGTH = MAX_PATH_LENGTH + 256

STDIN_TIMEOUT = 5 * 60

DEFAULT_PRIORITY = 99

# local ports tried by the best-effort reserved bind
RESERVED_PORT_LOW = 512
RESERVED_PORT_HIGH = 1023

TRANSFER_FAILED = "-Transmission failed to each Data Mover"
QUIT = "+QUIT"
