"""
Unit tests for configuration system.
"""

import pytest
from unittest.mock import patch

import sys
sys.path.append('src')

from config import (
    Config, CameraConfig, DetectionConfig, AlertConfig, MailConfig,
    PerformanceConfig, RelayConfig
)
from exceptions import ConfigurationError


class TestCameraConfig:
    """Test camera configuration validation."""

    def test_valid_camera_config(self):
        config = CameraConfig()
        assert config.resolution == (640, 480)
        assert config.fps == 15

    def test_invalid_resolution(self):
        with pytest.raises(ValueError, match="Invalid camera resolution"):
            CameraConfig(resolution=(0, 480))

    def test_invalid_fps(self):
        with pytest.raises(ValueError, match="Camera FPS must be positive"):
            CameraConfig(fps=0)


class TestDetectionConfig:
    """Test detection configuration validation."""

    def test_defaults(self):
        config = DetectionConfig()
        assert config.model_name == "movenet"
        assert config.keypoint_threshold == 0.3
        assert config.min_keypoints == 1

    def test_unknown_model(self):
        with pytest.raises(ValueError, match="Unknown pose model"):
            DetectionConfig(model_name="posenet-v9")

    def test_invalid_threshold(self):
        with pytest.raises(ValueError, match="Keypoint threshold"):
            DetectionConfig(keypoint_threshold=1.0)
        with pytest.raises(ValueError, match="Keypoint threshold"):
            DetectionConfig(keypoint_threshold=-0.1)


class TestAlertConfig:
    """Test alert configuration validation."""

    def test_defaults(self):
        config = AlertConfig()
        assert config.variant == "video"
        assert config.cooldown_seconds == 60.0
        assert config.capture_duration == 10.0

    def test_invalid_variant(self):
        with pytest.raises(ValueError, match="Invalid alert variant"):
            AlertConfig(variant="sms")

    def test_invalid_durations(self):
        with pytest.raises(ValueError, match="Cooldown must not be negative"):
            AlertConfig(cooldown_seconds=-1)
        with pytest.raises(ValueError, match="Capture duration must be positive"):
            AlertConfig(capture_duration=0)


class TestOtherSections:
    """Test remaining section validation."""

    def test_mail_transport(self):
        with pytest.raises(ValueError, match="Invalid mail transport"):
            MailConfig(transport="pigeon")

    def test_relay_port(self):
        with pytest.raises(ValueError, match="Invalid relay port"):
            RelayConfig(port=70000)

    def test_memory_threshold(self):
        with pytest.raises(ValueError, match="Memory threshold"):
            PerformanceConfig(memory_threshold=1.5)

    def test_shutdown_timeout(self):
        assert PerformanceConfig().shutdown_timeout == 30.0
        assert Config.create_test_config(PERFORMANCE_SHUTDOWN_TIMEOUT=5).performance.shutdown_timeout == 5.0
        with pytest.raises(ValueError, match="Shutdown timeout"):
            PerformanceConfig(shutdown_timeout=-1)


class TestConfig:
    """Test top-level configuration loading."""

    def test_create_test_config(self):
        config = Config.create_test_config()
        assert config.mail.smtp_user == "alarm@example.com"
        assert config.mail.sender == "alarm@example.com"
        assert config.mail.smtp_host == "send.one.com"
        assert config.mail.smtp_port == 465
        assert config.relay.max_body_bytes == 10 * 1024 * 1024

    def test_overrides(self):
        config = Config.create_test_config(
            ALERT_COOLDOWN_SECONDS=30,
            CAMERA_RESOLUTION="1280x720",
            DETECTION_MODEL="BlazePose",
        )
        assert config.alert.cooldown_seconds == 30.0
        assert config.camera.resolution == (1280, 720)
        assert config.detection.model_name == "blazepose"

    def test_malformed_value_keeps_default(self):
        config = Config.create_test_config(ALERT_COOLDOWN_SECONDS="soon", CAMERA_RESOLUTION="wide")
        assert config.alert.cooldown_seconds == 60.0
        assert config.camera.resolution == (640, 480)

    def test_out_of_range_value_raises(self):
        with pytest.raises(ConfigurationError, match="Invalid alert variant"):
            Config.create_test_config(ALERT_VARIANT="carrier-pigeon")

    def test_relay_url_trailing_slash(self):
        config = Config.create_test_config(RELAY_URL="http://relay.local:3000/")
        assert config.relay.url == "http://relay.local:3000"

    def test_missing_smtp_secrets(self):
        config = Config.create_test_config(SMTP_PASSWORD="")
        with pytest.raises(ConfigurationError, match="SMTP_PASSWORD"):
            config.check_secrets()

    def test_missing_telegram_secrets(self):
        config = Config.create_test_config(MAIL_TRANSPORT="telegram")
        with pytest.raises(ConfigurationError, match="TELEGRAM_BOT_TOKEN"):
            config.require_mail_secrets()

    def test_template_secrets(self):
        config = Config.create_test_config(ALERT_VARIANT="template")
        with pytest.raises(ConfigurationError, match="EMAILJS_SERVICE_ID"):
            config.check_secrets()

        config = Config.create_test_config(
            ALERT_VARIANT="template",
            EMAILJS_SERVICE_ID="service_x",
            EMAILJS_TEMPLATE_ID="template_y",
            EMAILJS_USER_ID="user_z",
        )
        config.check_secrets()

    def test_relay_variant_needs_no_local_secrets(self):
        config = Config.create_test_config(ALERT_VARIANT="relay", SMTP_USER="", SMTP_PASSWORD="")
        config.check_secrets()

    @patch('config.load_dotenv')
    def test_env_file_loaded_without_overrides(self, mock_load_dotenv):
        Config(require_secrets=False)
        mock_load_dotenv.assert_called_once()

    def test_summary_has_no_secrets(self):
        config = Config.create_test_config()
        summary = config.get_summary()
        assert summary['alert']['cooldown_seconds'] == 60.0
        assert 'test_password' not in str(summary)
