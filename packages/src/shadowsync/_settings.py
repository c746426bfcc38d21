"""Application configuration via pydantic-settings.

Configuration is loaded from environment variables and/or ``.env``
files, all prefixed with ``SHADOWSYNC_``.  Nested models use ``__`` as
the delimiter, e.g. ``SHADOWSYNC_MQTT__HOST=example-ats.iot.eu-west-1.amazonaws.com``.

The schema covers three concerns:

* **MQTT** — broker endpoint, credentials and TLS material.
* **Shadow** — request deadlines and QoS for shadow topics.
* **Logging** — level, format, optional file sink, rotation.

All durations are in **seconds**.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import (
    BaseModel,
    Field,
    SecretStr,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

# -------------------------------------------------------------------
# Sub-models (BaseModel, NOT BaseSettings; nested via composition)
# -------------------------------------------------------------------


class MqttSettings(BaseModel):
    """MQTT broker connection configuration.

    Environment variables (with ``__`` nesting)::

        SHADOWSYNC_MQTT__HOST=abc123-ats.iot.us-east-1.amazonaws.com
        SHADOWSYNC_MQTT__PORT=8883
        SHADOWSYNC_MQTT__CA_FILE=/certs/AmazonRootCA1.pem
        SHADOWSYNC_MQTT__CERT_FILE=/certs/device.pem.crt
        SHADOWSYNC_MQTT__KEY_FILE=/certs/private.pem.key
    """

    host: str = Field(
        default="localhost",
        description="MQTT broker hostname or IP address.",
    )
    port: Annotated[int, Field(ge=1, le=65535)] = Field(
        default=8883,
        description="MQTT broker port.",
    )
    username: str | None = Field(
        default=None,
        description="MQTT authentication username (optional).",
    )
    password: SecretStr | None = Field(
        default=None,
        description="MQTT authentication password (optional).",
    )
    client_id: str = Field(
        default="",
        description=(
            "MQTT client identifier. When empty, a 'shadowsync-{hex8}' "
            "identifier is generated at startup."
        ),
    )
    ca_file: str | None = Field(
        default=None,
        description="Path to the CA bundle used to verify the broker.",
    )
    cert_file: str | None = Field(
        default=None,
        description="Path to the client certificate (mutual TLS).",
    )
    key_file: str | None = Field(
        default=None,
        description="Path to the client private key (mutual TLS).",
    )
    reconnect_interval: Annotated[float, Field(gt=0)] = Field(
        default=5.0,
        description=(
            "Initial seconds to wait before reconnecting after "
            "connection loss.  Doubles on each consecutive failure "
            "up to ``reconnect_max_interval``."
        ),
    )
    reconnect_max_interval: Annotated[float, Field(gt=0)] = Field(
        default=300.0,
        description="Upper bound (seconds) for the reconnect backoff.",
    )

    @property
    def uses_tls(self) -> bool:
        """True when any TLS material is configured."""
        return any((self.ca_file, self.cert_file, self.key_file))


class ShadowSettings(BaseModel):
    """Shadow request behaviour.

    ``request_timeout`` bounds how long one update (or the snapshot
    handshake) may wait for its answer before the next queued request
    goes out.  ``operation_timeout`` is the transport-level deadline
    after which an unanswered request is reported as a diagnostic
    timeout event.
    """

    request_timeout: Annotated[float, Field(gt=0)] = Field(
        default=30.0,
        description="Seconds an update waits for its correlated response.",
    )
    operation_timeout: Annotated[float, Field(gt=0)] = Field(
        default=5.0,
        description="Seconds before the transport reports a request timeout.",
    )
    qos: Literal[0, 1] = Field(
        default=1,
        description="QoS for shadow topic publishes and subscriptions.",
    )


class LoggingSettings(BaseModel):
    """Logging configuration.

    When ``file`` is set, logs are also written to a rotating file
    (size-based rotation, ``backup_count`` generations kept).  When
    ``None``, logs go to stderr only.

    The ``format`` field selects the output format:

    - ``"json"`` (default) — structured JSON lines for log aggregators.
    - ``"text"`` — human-readable timestamped format for terminals.
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Root log level.",
    )
    format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format ('json' or 'text').",
    )
    file: str | None = Field(
        default=None,
        description="Optional log file path. ``None`` means stderr only.",
    )
    max_file_size_mb: Annotated[int, Field(ge=1)] = Field(
        default=10,
        description="Maximum log file size in megabytes before rotation.",
    )
    backup_count: Annotated[int, Field(ge=0)] = Field(
        default=3,
        description="Number of rotated log files to keep.",
    )


# -------------------------------------------------------------------
# Root settings
# -------------------------------------------------------------------


class Settings(BaseSettings):
    """Root settings for shadowsync.

    Example ``.env``::

        SHADOWSYNC_MQTT__HOST=abc123-ats.iot.us-east-1.amazonaws.com
        SHADOWSYNC_MQTT__CA_FILE=certs/AmazonRootCA1.pem
        SHADOWSYNC_MQTT__CERT_FILE=certs/device.pem.crt
        SHADOWSYNC_MQTT__KEY_FILE=certs/private.pem.key
        SHADOWSYNC_SHADOW__REQUEST_TIMEOUT=30
        SHADOWSYNC_LOGGING__FORMAT=text
    """

    model_config = SettingsConfigDict(
        env_prefix="SHADOWSYNC_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    mqtt: MqttSettings = Field(
        default_factory=MqttSettings,
        description="MQTT broker connection settings.",
    )
    shadow: ShadowSettings = Field(
        default_factory=ShadowSettings,
        description="Shadow request settings.",
    )
    logging: LoggingSettings = Field(
        default_factory=LoggingSettings,
        description="Logging configuration.",
    )
