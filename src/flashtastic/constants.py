"""
Constants and configuration values for Flashtastic.

This module contains all hardcoded values, URLs, USB identifiers, timeouts,
and other constants used throughout the application.
"""

# GitHub API URLs
GITHUB_API_URL = "https://api.github.com"
GITHUB_ORG = "flashtastic-devices"
GITHUB_BRIDGE_REPO = "bridge-firmware"
GITHUB_CLICK_REPO = "click-firmware"
GITHUB_ULOOP_REPO = "uloop-firmware"
GITHUB_ACCEPT_HEADER = "application/vnd.github+json"
GITHUB_API_VERSION = "2022-11-28"
GITHUB_TOKEN_ENV_VAR = "GITHUB_TOKEN"

# Network timeouts (in seconds)
DEFAULT_REQUEST_TIMEOUT = 30
DEFAULT_CHUNK_SIZE = 8192

# HTTP status handling
HTTP_STATUS_FORBIDDEN = 403
HTTP_STATUS_TOO_MANY_REQUESTS = 429
RATE_LIMIT_STATUS_CODES = (HTTP_STATUS_FORBIDDEN, HTTP_STATUS_TOO_MANY_REQUESTS)

# USB identifiers
USB_BRIDGE_VENDOR_ID = 0x1209
USB_BRIDGE_PRODUCT_ID = 0xB004
USB_BRIDGE6_PRODUCT_ID = 0xB006
USB_BRIDGE_PRODUCT_DFU_ID = 0xB0DF
USB_CLICK_VENDOR_ID = 0x1209
USB_CLICK_PRODUCT_ID = 0xC11C
USB_RP_VENDOR_ID = 0x2E8A
USB_RP_BOOTLOADER_PRODUCT_ID = 0x0003
USB_ULOOP_PRODUCT_ID = 0x100F

# DFU / DfuSe protocol
DFUSE_DEFAULT_ADDRESS = 0x08000000
DFUSE_PAGE_SIZE = 2048
DFU_DEFAULT_INTERFACE = 0
DFU_DEFAULT_ALT_SETTING = 0
DFU_DEFAULT_TRANSFER_SIZE = 2048
DFU_MAX_FIRMWARE_SIZE = 0xFFFFFFFF
DFUSE_FIRST_DATA_BLOCK = 2
DFUSE_LAST_BLOCK = 0xFFFF
DFU_USB_TIMEOUT_MS = 5000
DFU_STATUS_POLL_LIMIT = 1000

# Mass storage (UF2)
UF2_VOLUME_LABEL = "RPI-RP2"
UF2_SETTLE_SECONDS = 3.0
UF2_COPY_BUFFER_SIZE = 512

# Firmware asset extensions per install strategy
DFU_FIRMWARE_EXTENSION = ".bin"
UF2_FIRMWARE_EXTENSION = ".uf2"
ASSET_TAG_SEPARATORS = ("-", "_", ".")

# Configuration file names
CONFIG_FILE_NAME = "flashtastic.yaml"
APP_NAME = "flashtastic"

# Logging configuration
LOGGER_NAME = "flashtastic"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
INFO_LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
DEBUG_LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s: %(message)s"
LOG_FILE_NAME = "flashtastic.log"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
LOG_FILE_BACKUP_COUNT = 5

# Environment variable names
LOG_LEVEL_ENV_VAR = "FLASHTASTIC_LOG_LEVEL"
