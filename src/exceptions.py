"""
Consolidated exception hierarchy for the intruder monitor.

This module provides a unified exception hierarchy that allows for:
- Consistent error handling across the detection-to-alert pipeline
- Hierarchical exception catching (e.g., catch all ProcessingError)
- Clear categorization of error types
"""


# =============================================================================
# Base Exception
# =============================================================================

class IntruderMonitorError(Exception):
    """Base exception for all intruder monitor errors."""
    pass


class ConfigurationError(IntruderMonitorError):
    """Raised when configuration is missing or invalid."""
    pass


# =============================================================================
# Hardware Errors
# =============================================================================

class HardwareError(IntruderMonitorError):
    """Base exception for hardware-related errors."""
    pass


# Camera Errors
class CameraError(HardwareError):
    """Base exception for camera-related errors."""
    pass


class CameraInitializationError(CameraError):
    """Raised when the media stream cannot be acquired."""
    pass


class CameraOperationError(CameraError):
    """Raised when camera operations fail."""
    pass


class StreamEndedError(CameraError):
    """Raised when the media stream ends or errors mid-capture."""
    pass


# =============================================================================
# Processing Errors
# =============================================================================

class ProcessingError(IntruderMonitorError):
    """Base exception for processing-related errors."""
    pass


class DetectorError(ProcessingError):
    """Raised when the pose estimator fails instead of returning detections."""
    pass


# Capture Errors
class CaptureError(ProcessingError):
    """Base exception for evidence capture errors."""
    pass


class AlreadyCapturing(CaptureError):
    """Raised when a capture is started while another session is active."""
    pass


class TranscodeError(ProcessingError):
    """Raised on any codec/container failure. Not retried within a cycle."""
    pass


# =============================================================================
# Notification Errors
# =============================================================================

class NotificationError(IntruderMonitorError):
    """Base exception for notification-related errors."""
    pass


class InvalidAlert(NotificationError):
    """Raised when an alert message has no attachment."""
    pass


class DeliveryError(NotificationError):
    """Raised by mail transports when sending fails."""
    pass


class DeliveryAuthError(DeliveryError):
    """Raised when the mail transport rejects credentials."""
    pass


class AttachmentTooLarge(DeliveryError):
    """Raised when the attachment exceeds the transport limit."""
    pass
