"""
Custom exceptions for the Flashtastic application.

This module defines the domain-specific exceptions raised by the catalog
client, the asset downloader and the installers. Every operation fails with
exactly one of these so callers can tell a rate limit from a missing device
without parsing message strings.
"""

from typing import List, Optional


class FlashtasticError(Exception):
    """
    Base exception for all Flashtastic errors.

    All custom exceptions in Flashtastic inherit from this class to allow
    for easy catching of all application-specific errors.
    """

    def __init__(self, message: str, details: Optional[str] = None) -> None:
        """
        Initialize the exception.

        Args:
            message: The primary error message.
            details: Optional additional context about the error.
        """
        self.message = message
        self.details = details
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(FlashtasticError):
    """Exception raised when configuration is invalid or missing."""

    pass


class ConfigFileError(ConfigurationError):
    """Exception raised when configuration file cannot be read or parsed."""

    pass


class ConfigValidationError(ConfigurationError):
    """Exception raised when configuration validation fails."""

    pass


# =============================================================================
# Catalog / Network Errors
# =============================================================================


class CatalogError(FlashtasticError):
    """
    Base exception for release catalog and asset download failures.

    Attributes:
        url: The URL that was being requested when the error occurred.
    """

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        details: Optional[str] = None,
    ) -> None:
        super().__init__(message, details)
        self.url = url


class NetworkError(CatalogError):
    """
    Exception raised for transport-level failures.

    This includes:
    - Connection timeouts
    - DNS resolution failures
    - Connection refused or reset errors
    - Payload errors while reading a response body
    """

    pass


class HTTPError(CatalogError):
    """
    Exception raised when the server answers with a non-success status.

    Attributes:
        status_code: The HTTP status code returned by the server.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        url: Optional[str] = None,
        details: Optional[str] = None,
    ) -> None:
        super().__init__(message, url, details)
        self.status_code = status_code


class RateLimitError(HTTPError):
    """
    Exception raised when the catalog refuses requests (403 or 429).

    Attributes:
        reset_time: When the rate limit will reset (Unix timestamp), if known.
        remaining: Number of requests remaining, if reported.
    """

    def __init__(
        self,
        message: str = "GitHub API rate limit exceeded",
        status_code: int = 403,
        reset_time: Optional[int] = None,
        remaining: Optional[int] = None,
        url: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            status_code=status_code,
            url=url,
            details=f"Resets at: {reset_time}, Remaining: {remaining}",
        )
        self.reset_time = reset_time
        self.remaining = remaining


class ParseError(CatalogError):
    """Exception raised when a success response carries a malformed body."""

    pass


# =============================================================================
# Not Found Errors
# =============================================================================


class NotFoundError(FlashtasticError):
    """Base exception for a missing release, asset, USB device or disk."""

    pass


class NoCompatibleAssetError(NotFoundError):
    """Exception raised when a release has no asset for the connected device."""

    def __init__(
        self,
        message: str = "unable to find compatible asset in release",
        release_tag: Optional[str] = None,
        details: Optional[str] = None,
    ) -> None:
        super().__init__(message, details)
        self.release_tag = release_tag


class DeviceNotFoundError(NotFoundError):
    """
    Exception raised when no USB device matches the expected identifiers.

    Attributes:
        vendor_id: The USB vendor ID that was searched for.
        product_id: The USB product ID that was searched for.
    """

    def __init__(
        self,
        message: str = "device not found",
        vendor_id: Optional[int] = None,
        product_id: Optional[int] = None,
    ) -> None:
        details = None
        if vendor_id is not None and product_id is not None:
            details = f"{vendor_id:04x}:{product_id:04x}"
        super().__init__(message, details)
        self.vendor_id = vendor_id
        self.product_id = product_id


class DiskNotFoundError(NotFoundError):
    """Exception raised when no removable volume with the expected label is mounted."""

    def __init__(
        self,
        message: str = "target disk not available",
        volume_label: Optional[str] = None,
    ) -> None:
        super().__init__(message, volume_label)
        self.volume_label = volume_label


# =============================================================================
# File System Errors
# =============================================================================


class FileSystemError(FlashtasticError):
    """
    Exception raised for local file create/read/write failures.

    Attributes:
        path: The file path that caused the error.
    """

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        details: Optional[str] = None,
    ) -> None:
        super().__init__(message, details)
        self.path = path


class FirmwareSizeError(FileSystemError):
    """Exception raised when a firmware image exceeds the addressable transfer size."""

    def __init__(
        self, message: str, path: Optional[str] = None, size: int = 0
    ) -> None:
        super().__init__(message, path, details=f"{size} bytes")
        self.size = size


# =============================================================================
# USB / Protocol Errors
# =============================================================================


class UsbError(FlashtasticError):
    """
    Exception raised for failures while talking to a USB device.

    Attributes:
        stage: The install step that failed (open, claim, download, detach, reset).
    """

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        details: Optional[str] = None,
    ) -> None:
        super().__init__(message, details)
        self.stage = stage


class UsbTransportError(UsbError):
    """
    Exception raised when the USB transport fails during the firmware transfer.

    Usually points at a bad cable or port rather than a corrupt image.
    """

    pass


class DfuProtocolError(UsbError):
    """
    Exception raised when the device reports a DFU error status.

    Attributes:
        status: The bStatus value returned by DFU_GETSTATUS.
        state: The bState value returned by DFU_GETSTATUS.
    """

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        status: Optional[int] = None,
        state: Optional[int] = None,
    ) -> None:
        details = None
        if status is not None:
            details = f"status={status} state={state}"
        super().__init__(message, stage, details)
        self.status = status
        self.state = state


class DfuTeardownError(UsbError):
    """
    Exception raised when detach or reset fails after a complete transfer.

    The firmware image has already been written, so the device has likely
    been updated and should be checked manually.

    Attributes:
        failed_steps: Names of the teardown steps that failed.
        firmware_committed: Always True; the image was fully transferred.
    """

    def __init__(
        self,
        message: str,
        failed_steps: List[str],
        details: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            stage=failed_steps[0] if failed_steps else None,
            details=details,
        )
        self.failed_steps = list(failed_steps)
        self.firmware_committed = True


# =============================================================================
# Device Errors
# =============================================================================


class UnsupportedDeviceError(FlashtasticError):
    """
    Exception raised when a device type has no release channel.

    This covers the bootloader modes and unknown devices.
    """

    def __init__(
        self,
        message: str = "releases do not exist for this device type",
        device_type: Optional[str] = None,
    ) -> None:
        super().__init__(message, device_type)
        self.device_type = device_type
