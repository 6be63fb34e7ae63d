"""Defaults and fixed values shared across proxyprovisioner."""

DATA_DIR_MODE = 0o700
CONFIG_FILE_MODE = 0o600

DEFAULT_INSTANCE_NAME = "simple-proxy"
DEFAULT_DATA_DIR = "/root/.proxy-3proxy"
DEFAULT_IMAGE = "3proxy/3proxy"
DEFAULT_TEST_URL = "https://ifconfig.me"
DEFAULT_BANDWIDTH_MBIT = 10
DEFAULT_SETTLE_SECONDS = 2.0
DEFAULT_PROBE_TIMEOUT = 15.0

MIN_PORT = 1024
MAX_PORT = 65535
PORT_SCAN_RANGE = (20000, 40000)

CONTAINER_CONFIG_PATH = "/etc/3proxy/3proxy.cfg"
RESTART_POLICY = "unless-stopped"
TRANSPORT_PROTOCOL = "tcp"

DOCKER_BOOTSTRAP_URL = "https://get.docker.com"
DOCKER_APT_PACKAGE = "docker.io"
DPKG_LOCK_FILES = ("/var/lib/dpkg/lock", "/var/lib/dpkg/lock-frontend")

LOG_TAIL_LINES = 50

PULL_RETRY_COUNT = 2
PULL_RETRY_BACKOFF_SECONDS = 3.0
# apt-get exits 100 when it cannot take the dpkg lock.
APT_LOCK_RETURNCODE = 100

HTTP_PROXY_PROFILE = "http-proxy"
AMNEZIAWG_PROFILE = "amneziawg"
PROFILES = (HTTP_PROXY_PROFILE, AMNEZIAWG_PROFILE)

DEFAULT_WG_INSTANCE_NAME = "amnezia-wg-easy"
DEFAULT_WG_DATA_DIR = "/root/.amnezia-wg-easy"
DEFAULT_WG_IMAGE = "ghcr.io/w0rng/amnezia-wg-easy"
DEFAULT_WG_PORT = 53100
DEFAULT_WG_CLIENT_SUBNET = "10.48.0.x"
WG_PROTOCOL = "udp"
WG_WEB_UI_PORT = 51821
WG_CONTAINER_DATA_PATH = "/etc/wireguard"
WG_CAPABILITIES = ("NET_ADMIN", "SYS_MODULE")
WG_DEVICES = ("/dev/net/tun",)
