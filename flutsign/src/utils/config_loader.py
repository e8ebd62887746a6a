import os
from dataclasses import dataclass
from pathlib import Path
import toml
from typing import Dict, Any, Optional, Mapping, Tuple

from flutsign.src.core.errors import ConfigurationError
from flutsign.src.core.signing_resolver import (
    DEFAULT_IDENTITY_NAME,
    DEFAULT_PLACEHOLDER_BUNDLE_IDS,
    MismatchPolicy,
)

CERT_TYPES = ("p12", "manual")
EXPORT_METHODS = ("app-store", "ad-hoc", "enterprise", "development")

# Argument name -> environment variable. These names are shared with the CI
# workflow definitions and must not change.
ENV_VARS = {
    "profile_url": "PROFILE_URL",
    "cert_p12_url": "CERT_P12_URL",
    "cert_cer_url": "CERT_CER_URL",
    "cert_key_url": "CERT_KEY_URL",
    "cert_password": "CERT_PASSWORD",
    "cert_type": "CERT_TYPE",
    "bundle_id": "BUNDLE_ID",
    "team_id": "APPLE_TEAM_ID",
    "version_name": "VERSION_NAME",
    "version_code": "VERSION_CODE",
    "app_name": "APP_NAME",
    "profile_type": "PROFILE_TYPE",
    "asc_key_id": "APP_STORE_CONNECT_KEY_IDENTIFIER",
    "asc_issuer_id": "APP_STORE_CONNECT_ISSUER_ID",
    "asc_api_key_url": "APP_STORE_CONNECT_API_KEY_URL",
    "upload": "UPLOAD_TO_APP_STORE",
}


@dataclass(frozen=True)
class FlutsignConfig:
    """Immutable settings for one build, created once at startup"""

    # Credentials
    profile_url: Optional[str] = None
    cert_type: str = "p12"
    cert_p12_url: Optional[str] = None
    cert_cer_url: Optional[str] = None
    cert_key_url: Optional[str] = None
    cert_password: Optional[str] = None

    # Identity
    bundle_id: Optional[str] = None
    team_id: Optional[str] = None
    app_name: Optional[str] = None
    version_name: Optional[str] = None
    version_code: Optional[str] = None

    # Signing policy
    profile_type: str = "app-store"
    placeholder_bundle_ids: Tuple[str, ...] = DEFAULT_PLACEHOLDER_BUNDLE_IDS
    mismatch_policy: MismatchPolicy = MismatchPolicy.PERMISSIVE
    main_target: str = "Runner"
    identity_name: str = DEFAULT_IDENTITY_NAME

    # Layout and build
    project_dir: Path = Path(".")
    output_dir: Path = Path("output/ios")
    work_dir: Optional[Path] = None
    download_timeout: float = 60.0
    pod_install_retries: int = 0

    # App Store Connect
    upload: bool = False
    asc_key_id: Optional[str] = None
    asc_issuer_id: Optional[str] = None
    asc_api_key_url: Optional[str] = None

    @property
    def ios_dir(self) -> Path:
        return self.project_dir / "ios"

    @property
    def xcconfig_path(self) -> Path:
        return self.ios_dir / "Flutter" / "Release.xcconfig"

    @property
    def pbxproj_path(self) -> Path:
        return self.ios_dir / f"{self.main_target}.xcodeproj" / "project.pbxproj"

    @property
    def export_options_path(self) -> Path:
        return self.ios_dir / "ExportOptions.plist"

    @property
    def podfile_path(self) -> Path:
        return self.ios_dir / "Podfile"

    @property
    def info_plist_path(self) -> Path:
        return self.ios_dir / self.main_target / "Info.plist"

    @property
    def summary_path(self) -> Path:
        return self.project_dir / "signing_variables_summary.txt"


def get_config_path(environ: Optional[Mapping[str, str]] = None) -> Path:
    """Return the path to the configuration file."""
    environ = os.environ if environ is None else environ
    env_path = environ.get("FLUTSIGN_CONFIG")
    if env_path:
        return Path(env_path)
    return Path.home() / ".flutsign" / "config.toml"


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """Load configuration from TOML file."""
    config_path = config_path or get_config_path()
    if not config_path.exists():
        return {}

    try:
        return toml.load(config_path)
    except Exception as e:
        raise ConfigurationError(f"Failed to load config {config_path}: {e}")


def _blank_to_none(value):
    # An unset store_true flag must not shadow the environment
    if value is False:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _as_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def build_config(
    args=None,
    environ: Optional[Mapping[str, str]] = None,
    config_path: Optional[Path] = None,
) -> FlutsignConfig:
    """Merge CLI flags, environment variables and the TOML file.

    Precedence is flag > environment > file > default.
    """
    environ = os.environ if environ is None else environ
    if config_path is None and args is not None and getattr(args, "config", None):
        config_path = Path(args.config)
    file_config = load_config(config_path or get_config_path(environ))
    signing_section = file_config.get("signing", {})
    build_section = file_config.get("build", {})

    values: Dict[str, Any] = {}
    for name, env_name in ENV_VARS.items():
        value = _blank_to_none(getattr(args, name, None)) if args is not None else None
        if value is None:
            value = _blank_to_none(environ.get(env_name))
        if value is not None:
            values[name] = value

    if "cert_type" in values:
        values["cert_type"] = values["cert_type"].lower()
        if values["cert_type"] not in CERT_TYPES:
            raise ConfigurationError(
                f"Unknown certificate type: {values['cert_type']} "
                f"(supported: {', '.join(CERT_TYPES)})"
            )

    profile_type = values.get(
        "profile_type", signing_section.get("export_method", "app-store")
    )
    if profile_type not in EXPORT_METHODS:
        raise ConfigurationError(
            f"Unknown profile type: {profile_type} "
            f"(supported: {', '.join(EXPORT_METHODS)})"
        )
    values["profile_type"] = profile_type

    if "upload" in values:
        values["upload"] = _as_bool(values["upload"])

    # Mismatch policy: --strict wins, then file, then permissive
    if args is not None and getattr(args, "strict", False):
        values["mismatch_policy"] = MismatchPolicy.STRICT
    elif "mismatch_policy" in signing_section:
        try:
            values["mismatch_policy"] = MismatchPolicy(
                signing_section["mismatch_policy"]
            )
        except ValueError:
            raise ConfigurationError(
                f"Unknown mismatch policy: {signing_section['mismatch_policy']}"
            )

    if "placeholder_bundle_ids" in signing_section:
        values["placeholder_bundle_ids"] = tuple(
            signing_section["placeholder_bundle_ids"]
        )
    for key in ("main_target", "identity_name"):
        if key in signing_section:
            values[key] = signing_section[key]

    for key in ("project_dir", "output_dir", "work_dir"):
        value = getattr(args, key, None) if args is not None else None
        if value is None:
            value = build_section.get(key)
        if value is not None:
            values[key] = Path(value)

    if "download_timeout" in build_section:
        values["download_timeout"] = float(build_section["download_timeout"])
    if "pod_install_retries" in build_section:
        values["pod_install_retries"] = int(build_section["pod_install_retries"])

    return FlutsignConfig(**values)
