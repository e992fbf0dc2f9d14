"""
Configuration management (SSOT).

This module defines ALL configuration for the chat-ledger pipeline.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- Confidence weights are ordered: edit > reaction > timeout
- Policy thresholds apply per cohort; there is no global override
- Secrets (API keys, cron secret) come from the environment when set
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


@dataclass
class ExtractionConfig:
    """Extraction service (OpenAI-compatible chat completions) configuration.

    The same base URL serves the transcription endpoint for audio messages.
    """

    base_url: str = "https://api.groq.com/openai/v1"
    api_key: str = ""
    model: str = "llama-3.1-8b-instant"
    transcription_model: str = "whisper-large-v3"
    # Language hint for transcription
    language: str = "es"
    temperature: float = 0.2
    # Request timeout (seconds)
    timeout_seconds: int = 30


@dataclass
class ConfirmationConfig:
    """Pending-confirmation settings."""

    # Lifetime of a pending confirmation before the sweeper times it out
    ttl_minutes: int = 30
    # Treat explicit negative replies as a terminal "rejected" resolution
    rejection_enabled: bool = True


@dataclass
class FeedbackConfig:
    """Confidence weights recorded per resolution origin."""

    reaction_weight: float = 1.0
    # Maximum weight: the user actively reviewed the content
    edit_weight: float = 2.0
    # Passive expiry, lower than any active signal
    timeout_weight: float = 0.5
    rejection_weight: float = 1.0


@dataclass
class PolicyConfig:
    """Per-cohort confirmation policy thresholds."""

    # Accuracy percentage at or above which a cohort switches to automatic
    min_accuracy: float = 90.0
    # Minimum number of verified records before switching
    min_verified: int = 1000
    # Allow an automatic cohort to return to manual confirmation
    reversible: bool = False
    # Accuracy below which an automatic cohort reverts (when reversible)
    revert_accuracy: float = 85.0
    # Minimum hours between two policy switches for the same cohort
    cooldown_hours: int = 24


@dataclass
class GatewayConfig:
    """Messaging gateway (outbound messages) configuration.

    When base_url is empty no outbound messages are sent.
    """

    base_url: str = ""
    token: str = ""
    timeout_seconds: int = 15
    # Invitation text sent to unknown senders
    invitation_text: str = (
        "Hi! This number is not registered yet. Sign up in the app to start "
        "recording your expenses by message."
    )
    # Minimum hours between two invitations to the same phone
    invitation_cooldown_hours: int = 24


@dataclass
class SweeperConfig:
    """Expiry sweeper settings."""

    # Shared secret required by the trigger (empty = no check)
    secret: str = ""
    # Maximum rows resolved per run
    batch_size: int = 500


@dataclass
class Config:
    """Application configuration (SSOT).

    All configuration is centralized here. No other module should define
    configuration keys or defaults.
    """

    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    confirmation: ConfirmationConfig = field(default_factory=ConfirmationConfig)
    feedback: FeedbackConfig = field(default_factory=FeedbackConfig)
    policy: PolicyConfig = field(default_factory=PolicyConfig)
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    sweeper: SweeperConfig = field(default_factory=SweeperConfig)
    state_db_path: Path = field(default_factory=lambda: Path("data/state.db"))
    # SQLite busy timeout for store calls (seconds)
    store_timeout_seconds: float = 5.0
    # Cohort assigned to users registered without one
    default_cohort: str = "BOL"
    # Currency used when the extraction omits it
    default_currency: str = "BOB"

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if self.confirmation.ttl_minutes <= 0:
            errors.append("confirmation.ttl_minutes must be positive")

        fb = self.feedback
        for name in ("reaction_weight", "edit_weight", "timeout_weight", "rejection_weight"):
            if getattr(fb, name) <= 0:
                errors.append(f"feedback.{name} must be positive")
        if fb.edit_weight <= fb.reaction_weight:
            errors.append("feedback.edit_weight must be greater than reaction_weight")
        if fb.timeout_weight >= fb.reaction_weight:
            errors.append("feedback.timeout_weight must be lower than reaction_weight")

        if not 0 <= self.policy.min_accuracy <= 100:
            errors.append("policy.min_accuracy must be between 0 and 100")
        if self.policy.min_verified < 0:
            errors.append("policy.min_verified must not be negative")
        if self.policy.reversible and self.policy.revert_accuracy > self.policy.min_accuracy:
            errors.append("policy.revert_accuracy must be <= policy.min_accuracy")

        if not self.default_cohort:
            errors.append("default_cohort is required")

        return errors


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name, "").lower()
    if value == "true":
        return True
    if value == "false":
        return False
    return default


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - CHAT_LEDGER_DB (state database path)
    - EXTRACTION_API_URL
    - EXTRACTION_API_KEY (falls back to GROQ_API_KEY)
    - EXTRACTION_MODEL
    - EXTRACTION_TIMEOUT (request timeout in seconds)
    - GATEWAY_URL
    - GATEWAY_TOKEN
    - CHAT_LEDGER_CRON_SECRET
    - CHAT_LEDGER_POLICY_REVERSIBLE (true/false)
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    extraction_data = data.get("extraction", {})
    extraction = ExtractionConfig(
        base_url=os.environ.get(
            "EXTRACTION_API_URL",
            extraction_data.get("base_url", "https://api.groq.com/openai/v1"),
        ),
        api_key=os.environ.get(
            "EXTRACTION_API_KEY",
            os.environ.get("GROQ_API_KEY", extraction_data.get("api_key", "")),
        ),
        model=os.environ.get("EXTRACTION_MODEL", extraction_data.get("model", "llama-3.1-8b-instant")),
        transcription_model=extraction_data.get("transcription_model", "whisper-large-v3"),
        language=extraction_data.get("language", "es"),
        temperature=extraction_data.get("temperature", 0.2),
        timeout_seconds=int(os.environ.get(
            "EXTRACTION_TIMEOUT", extraction_data.get("timeout_seconds", 30)
        )),
    )

    confirmation_data = data.get("confirmation", {})
    confirmation = ConfirmationConfig(
        ttl_minutes=confirmation_data.get("ttl_minutes", 30),
        rejection_enabled=confirmation_data.get("rejection_enabled", True),
    )

    feedback_data = data.get("feedback", {})
    feedback = FeedbackConfig(
        reaction_weight=feedback_data.get("reaction_weight", 1.0),
        edit_weight=feedback_data.get("edit_weight", 2.0),
        timeout_weight=feedback_data.get("timeout_weight", 0.5),
        rejection_weight=feedback_data.get("rejection_weight", 1.0),
    )

    policy_data = data.get("policy", {})
    policy = PolicyConfig(
        min_accuracy=policy_data.get("min_accuracy", 90.0),
        min_verified=policy_data.get("min_verified", 1000),
        reversible=_env_bool(
            "CHAT_LEDGER_POLICY_REVERSIBLE", policy_data.get("reversible", False)
        ),
        revert_accuracy=policy_data.get("revert_accuracy", 85.0),
        cooldown_hours=policy_data.get("cooldown_hours", 24),
    )

    gateway_data = data.get("gateway", {})
    gateway = GatewayConfig(
        base_url=os.environ.get("GATEWAY_URL", gateway_data.get("base_url", "")),
        token=os.environ.get("GATEWAY_TOKEN", gateway_data.get("token", "")),
        timeout_seconds=gateway_data.get("timeout_seconds", 15),
        invitation_text=gateway_data.get("invitation_text", GatewayConfig.invitation_text),
        invitation_cooldown_hours=gateway_data.get("invitation_cooldown_hours", 24),
    )

    sweeper_data = data.get("sweeper", {})
    sweeper = SweeperConfig(
        secret=os.environ.get("CHAT_LEDGER_CRON_SECRET", sweeper_data.get("secret", "")),
        batch_size=sweeper_data.get("batch_size", 500),
    )

    state_db = os.environ.get("CHAT_LEDGER_DB", data.get("state_db_path", "data/state.db"))

    return Config(
        extraction=extraction,
        confirmation=confirmation,
        feedback=feedback,
        policy=policy,
        gateway=gateway,
        sweeper=sweeper,
        state_db_path=Path(state_db),
        store_timeout_seconds=data.get("store_timeout_seconds", 5.0),
        default_cohort=data.get("default_cohort", "BOL"),
        default_currency=data.get("default_currency", "BOB"),
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# chat-ledger configuration
#
# Secrets can be left empty here and provided through the environment:
# EXTRACTION_API_KEY / GROQ_API_KEY, GATEWAY_TOKEN, CHAT_LEDGER_CRON_SECRET

extraction:
  base_url: "https://api.groq.com/openai/v1"   # OpenAI-compatible endpoint
  api_key: ""
  model: "llama-3.1-8b-instant"
  transcription_model: "whisper-large-v3"      # Used for audio messages
  language: "es"
  temperature: 0.2
  timeout_seconds: 30

confirmation:
  ttl_minutes: 30                # Pending confirmations expire after this
  rejection_enabled: true        # "no" replies reject instead of being ignored

# Confidence weights per resolution origin (edit > reaction > timeout)
feedback:
  reaction_weight: 1.0
  edit_weight: 2.0
  timeout_weight: 0.5
  rejection_weight: 1.0

# Per-cohort switch to automatic mode
policy:
  min_accuracy: 90.0             # Weighted accuracy percentage
  min_verified: 1000             # Verified records required
  reversible: false              # Allow switching back to manual
  revert_accuracy: 85.0          # Below this an automatic cohort reverts
  cooldown_hours: 24             # Minimum time between switches

# Outbound messages (invitations to unknown senders)
gateway:
  base_url: ""                   # Empty disables outbound messages
  token: ""
  timeout_seconds: 15
  invitation_cooldown_hours: 24

sweeper:
  secret: ""                     # Required token for the sweep trigger
  batch_size: 500

state_db_path: "data/state.db"
store_timeout_seconds: 5.0
default_cohort: "BOL"
default_currency: "BOB"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
