import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from flutsign.logger import log_info, log_success, log_warning
from flutsign.src.core.errors import BuildError
from flutsign.src.core.signing_resolver import ResolvedSigningConfig


@dataclass
class BuildArtifact:
    """An archive and the package exported from it"""

    archive_path: Path
    package_path: Path
    kind: str = "ipa"

    @property
    def size_bytes(self) -> int:
        return self.package_path.stat().st_size if self.package_path.exists() else 0

    def validate(self) -> None:
        if not self.archive_path.is_dir():
            raise BuildError("archive", f"{self.archive_path} not found")
        if not self.package_path.is_file():
            raise BuildError("export", f"{self.package_path} not found")
        if self.size_bytes == 0:
            raise BuildError("export", f"{self.kind.upper()} file is empty: {self.package_path}")
        log_info(f"📱 {self.kind.upper()} file size: {self.size_bytes} bytes")

    def copy_to(self, output_dir: Path) -> Path:
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        destination = output_dir / self.package_path.name
        if self.package_path.resolve() != destination.resolve():
            shutil.copy2(self.package_path, destination)
        log_success(f"Copied {self.package_path.name} to {output_dir}")
        return destination


def find_package(search_dirs: Iterable[Path], pattern: str = "*.ipa") -> Optional[Path]:
    """First file matching ``pattern`` under the given directories, in order"""
    for search_dir in search_dirs:
        search_dir = Path(search_dir)
        if not search_dir.is_dir():
            continue
        matches = sorted(p for p in search_dir.rglob(pattern) if p.is_file())
        if matches:
            log_success(f"Found {matches[0].suffix.lstrip('.').upper()} at: {matches[0]}")
            return matches[0]
    log_warning(f"No {pattern} found in: {', '.join(str(d) for d in search_dirs)}")
    return None


def _value(value: Optional[str]) -> str:
    return value if value else "NOT PROVIDED"


def write_signing_summary(path: Path, resolved: ResolvedSigningConfig, config) -> Path:
    """Plain-text audit record of the resolved signing values"""
    lines = [
        "Signing Variables Summary",
        "=========================",
        "",
        "Resolved Variables:",
        f"- UUID: {resolved.profile_uuid} (source: profile)",
        f"- APPLE_TEAM_ID: {resolved.team_id} (source: {resolved.team_id_source.value})",
        f"- BUNDLE_ID: {resolved.bundle_id} (source: {resolved.bundle_id_source.value})",
        f"- CODE_SIGN_IDENTITY: {resolved.cert_identity_name}",
        "",
        "Source Files:",
        f"- PROFILE_URL: {_value(config.profile_url)}",
        f"- CERT_TYPE: {config.cert_type}",
        f"- CERT_P12_URL: {_value(config.cert_p12_url)}",
        f"- CERT_CER_URL: {_value(config.cert_cer_url)}",
        f"- CERT_KEY_URL: {_value(config.cert_key_url)}",
        "",
        f"Extraction Date: {datetime.now().isoformat(timespec='seconds')}",
    ]
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n")
    log_success(f"Variables summary created: {path}")
    return path


def write_artifacts_summary(
    path: Path,
    artifact: BuildArtifact,
    resolved: ResolvedSigningConfig,
    config,
    export_options_path: Path,
    logs: Iterable[Path] = (),
) -> Path:
    lines = [
        "iOS Build Artifacts Summary",
        "===========================",
        "",
        "Build Information:",
        f"- App Name: {config.app_name or 'Unknown'}",
        f"- Bundle ID: {resolved.bundle_id}",
        f"- Version: {config.version_name or 'Unknown'}",
        f"- Build Number: {config.version_code or 'Unknown'}",
        f"- Team ID: {resolved.team_id}",
        f"- Profile UUID: {resolved.profile_uuid}",
        "",
        "Generated Files:",
        f"- {artifact.kind.upper()} File: {artifact.package_path} ({artifact.size_bytes} bytes)",
        f"- Archive: {artifact.archive_path}",
        f"- ExportOptions: {export_options_path}",
        f"- Release Config: {config.xcconfig_path}",
        "",
        "Build Logs:",
    ]
    lines += [f"- {log}" for log in logs]
    lines += [
        "",
        "Build Status: SUCCESS",
        f"Build Date: {datetime.now().isoformat(timespec='seconds')}",
    ]
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n")
    log_success(f"Artifacts summary created: {path}")
    return path
