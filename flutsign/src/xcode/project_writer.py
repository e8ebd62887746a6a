"""Writes resolved signing values into the Xcode project.

Every writer here is idempotent: running it again with the same
ResolvedSigningConfig leaves the files byte-identical.
"""

import plistlib
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from pbxproj import XcodeProject

from flutsign.logger import log_info, log_success, log_warning
from flutsign.src.core.errors import ProjectConfigError
from flutsign.src.core.signing_resolver import ResolvedSigningConfig

XCCONFIG_KEYS = (
    "CODE_SIGN_STYLE",
    "DEVELOPMENT_TEAM",
    "PROVISIONING_PROFILE_SPECIFIER",
    "CODE_SIGN_IDENTITY",
    "PRODUCT_BUNDLE_IDENTIFIER",
)

XCCONFIG_HEADER = '#include "Generated.xcconfig"'

# Dependencies stay unsigned so their profiles never clash with the app's
DEPENDENCY_SIGNING_SETTINGS = {
    "CODE_SIGN_STYLE": "Automatic",
    "CODE_SIGNING_ALLOWED": "NO",
    "CODE_SIGNING_REQUIRED": "NO",
    "DEVELOPMENT_TEAM": "",
    "PROVISIONING_PROFILE_SPECIFIER": "",
}

POD_SIGNING_SETTINGS = {
    "CODE_SIGN_STYLE": "Automatic",
    "CODE_SIGNING_ALLOWED": "NO",
    "CODE_SIGNING_REQUIRED": "NO",
    "EXPANDED_CODE_SIGN_IDENTITY": "",
    "DEVELOPMENT_TEAM": "",
    "PROVISIONING_PROFILE_SPECIFIER": "",
}

PODFILE_BEGIN_MARKER = "# flutsign: begin signing overrides"
PODFILE_END_MARKER = "# flutsign: end signing overrides"

POST_INSTALL_LINE = re.compile(r"^([ \t]*)post_install[ \t]+do[ \t]+\|(\w+)\|[ \t]*$", re.MULTILINE)


def main_target_settings(resolved: ResolvedSigningConfig) -> Dict[str, str]:
    return {
        "CODE_SIGN_STYLE": "Manual",
        "DEVELOPMENT_TEAM": resolved.team_id,
        "PROVISIONING_PROFILE_SPECIFIER": resolved.profile_uuid,
        "CODE_SIGN_IDENTITY": resolved.cert_identity_name,
        "CODE_SIGN_IDENTITY[sdk=iphoneos*]": resolved.cert_identity_name,
        "PRODUCT_BUNDLE_IDENTIFIER": resolved.bundle_id,
        "CODE_SIGNING_ALLOWED": "YES",
        "CODE_SIGNING_REQUIRED": "YES",
    }


class XcconfigWriter:
    def __init__(self, path: Path):
        self.path = Path(path)

    def render(self, resolved: ResolvedSigningConfig, existing: str = "") -> str:
        kept: List[str] = []
        for line in existing.splitlines():
            key = line.split("=", 1)[0].strip() if "=" in line else ""
            if key in XCCONFIG_KEYS:
                continue
            kept.append(line.rstrip())
        while kept and not kept[-1].strip():
            kept.pop()
        if not kept:
            kept = [XCCONFIG_HEADER]

        values = {
            "CODE_SIGN_STYLE": "Manual",
            "DEVELOPMENT_TEAM": resolved.team_id,
            "PROVISIONING_PROFILE_SPECIFIER": resolved.profile_uuid,
            "CODE_SIGN_IDENTITY": resolved.cert_identity_name,
            "PRODUCT_BUNDLE_IDENTIFIER": resolved.bundle_id,
        }
        lines = kept + [f"{key} = {values[key]}" for key in XCCONFIG_KEYS]
        return "\n".join(lines) + "\n"

    def write(self, resolved: ResolvedSigningConfig) -> Path:
        existing = self.path.read_text() if self.path.exists() else ""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(self.render(resolved, existing))
        log_success(f"Updated {self.path.name} with signing values")
        return self.path


class XcodeProjectWriter:
    """Manual signing for the app target, unsigned automatic for the rest"""

    def __init__(
        self,
        path: Path,
        main_target: str = "Runner",
        configuration_name: Optional[str] = None,
    ):
        self.path = Path(path)
        self.main_target = main_target
        self.configuration_name = configuration_name

    def write(self, resolved: ResolvedSigningConfig) -> Path:
        if not self.path.exists():
            raise ProjectConfigError(f"Project file not found: {self.path}")

        try:
            project = XcodeProject.load(str(self.path))
        except Exception as e:
            raise ProjectConfigError(f"Could not parse {self.path}: {e}") from e

        target_names = sorted({target.name for target in project.objects.get_targets()})
        if self.main_target not in target_names:
            raise ProjectConfigError(
                f"Target {self.main_target} not found in {self.path} "
                f"(targets: {', '.join(target_names) or 'none'})"
            )

        for target_name in target_names:
            if target_name == self.main_target:
                settings = main_target_settings(resolved)
                log_info(f"🔧 Configuring {target_name} target for manual signing")
            else:
                settings = DEPENDENCY_SIGNING_SETTINGS
                log_info(f"🔧 Disabling code signing for {target_name}")
            for key, value in settings.items():
                project.set_flags(
                    key,
                    value,
                    target_name=target_name,
                    configuration_name=self.configuration_name,
                )

        project.save()
        log_success(f"Project file configured for {self.main_target}-only signing")
        return self.path


@dataclass(frozen=True)
class ExportOptions:
    """Typed ExportOptions.plist schema"""

    method: str
    team_id: str
    provisioning_profiles: Dict[str, str] = field(default_factory=dict)
    signing_style: str = "manual"
    signing_certificate: str = "iPhone Distribution"
    strip_swift_symbols: bool = True
    upload_bitcode: bool = False
    upload_symbols: bool = True
    compile_bitcode: bool = False
    thinning: str = "<none>"

    @classmethod
    def from_resolved(cls, resolved: ResolvedSigningConfig, method: str) -> "ExportOptions":
        return cls(
            method=method,
            team_id=resolved.team_id,
            provisioning_profiles={resolved.bundle_id: resolved.profile_uuid},
            signing_certificate=resolved.cert_identity_name,
        )

    def to_plist(self) -> dict:
        missing = [
            name
            for name, value in (
                ("method", self.method),
                ("teamID", self.team_id),
                ("signingStyle", self.signing_style),
            )
            if not value
        ]
        if not self.provisioning_profiles or not all(
            bundle and uuid for bundle, uuid in self.provisioning_profiles.items()
        ):
            missing.append("provisioningProfiles")
        if missing:
            raise ProjectConfigError(
                f"ExportOptions is missing required keys: {', '.join(missing)}"
            )

        return {
            "method": self.method,
            "provisioningProfiles": dict(self.provisioning_profiles),
            "teamID": self.team_id,
            "signingStyle": self.signing_style,
            "signingCertificate": self.signing_certificate,
            "stripSwiftSymbols": self.strip_swift_symbols,
            "uploadBitcode": self.upload_bitcode,
            "uploadSymbols": self.upload_symbols,
            "compileBitcode": self.compile_bitcode,
            "thinning": self.thinning,
        }


class ExportOptionsWriter:
    def __init__(self, path: Path, method: str = "app-store"):
        self.path = Path(path)
        self.method = method

    def write(self, resolved: ResolvedSigningConfig) -> Path:
        options = ExportOptions.from_resolved(resolved, self.method)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_bytes(plistlib.dumps(options.to_plist(), sort_keys=True))
        log_success(f"ExportOptions.plist written: {self.path}")
        return self.path


def render_pod_signing_block(
    installer_var: str = "installer",
    indent: str = "  ",
    settings: Optional[Dict[str, str]] = None,
) -> List[str]:
    """Ruby lines that disable signing for every pod target"""
    settings = POD_SIGNING_SETTINGS if settings is None else settings
    lines = [
        f"{indent}{PODFILE_BEGIN_MARKER}",
        f"{indent}{installer_var}.pods_project.targets.each do |target|",
        f"{indent}  target.build_configurations.each do |config|",
    ]
    for key, value in settings.items():
        lines.append(f"{indent}    config.build_settings['{key}'] = '{value}'")
    lines += [
        f"{indent}  end",
        f"{indent}end",
        f"{indent}{PODFILE_END_MARKER}",
    ]
    return lines


class PodfileSigningWriter:
    """Keeps every pod target unsigned via the Podfile post_install hook"""

    def __init__(self, path: Path):
        self.path = Path(path)

    def render(self, content: str) -> str:
        lines = self._strip_block(content.splitlines())
        text = "\n".join(lines)

        match = POST_INSTALL_LINE.search(text)
        if match:
            indent = match.group(1) + "  "
            block = render_pod_signing_block(match.group(2), indent)
            # Insert right after the existing hook's opening line
            head = text[: match.end()]
            tail = text[match.end():]
            text = head + "\n" + "\n".join(block) + tail
        else:
            while text.endswith("\n"):
                text = text[:-1]
            hook = ["", "post_install do |installer|"]
            hook += render_pod_signing_block("installer", "  ")
            hook.append("end")
            text = text + "\n".join(hook)
        return text.rstrip("\n") + "\n"

    @staticmethod
    def _strip_block(lines: List[str]) -> List[str]:
        result = []
        skipping = False
        for line in lines:
            stripped = line.strip()
            if stripped == PODFILE_BEGIN_MARKER:
                skipping = True
                continue
            if stripped == PODFILE_END_MARKER:
                skipping = False
                continue
            if not skipping:
                result.append(line)
        return result

    def write(self) -> Optional[Path]:
        if not self.path.exists():
            log_warning(f"Podfile not found at {self.path}, skipping pod signing overrides")
            return None
        self.path.write_text(self.render(self.path.read_text()))
        log_success("Podfile updated to disable code signing for pods")
        return self.path


class InfoPlistWriter:
    """Points the app's Info.plist at the resolved bundle ID and display name"""

    BUNDLE_ID_REFERENCE = "$(PRODUCT_BUNDLE_IDENTIFIER)"

    def __init__(self, path: Path):
        self.path = Path(path)

    def write(self, resolved: ResolvedSigningConfig, app_name: Optional[str] = None) -> Optional[Path]:
        if not self.path.exists():
            log_warning(f"Info.plist not found at {self.path}, skipping")
            return None

        with open(self.path, "rb") as f:
            info = plistlib.load(f)

        # A build-setting reference already picks up PRODUCT_BUNDLE_IDENTIFIER
        if info.get("CFBundleIdentifier") != self.BUNDLE_ID_REFERENCE:
            info["CFBundleIdentifier"] = resolved.bundle_id
        if app_name:
            info["CFBundleDisplayName"] = app_name

        self.path.write_bytes(plistlib.dumps(info, sort_keys=False))
        log_success(f"Info.plist updated with bundle identifier: {resolved.bundle_id}")
        return self.path


class ProjectSigningWriter:
    """Applies one ResolvedSigningConfig to every signing-related file"""

    def __init__(self, config):
        self.config = config
        self.xcconfig = XcconfigWriter(config.xcconfig_path)
        self.project = XcodeProjectWriter(config.pbxproj_path, config.main_target)
        self.export_options = ExportOptionsWriter(
            config.export_options_path, config.profile_type
        )
        self.podfile = PodfileSigningWriter(config.podfile_path)
        self.info_plist = InfoPlistWriter(config.info_plist_path)

    def write(self, resolved: ResolvedSigningConfig) -> List[Path]:
        written = [
            self.xcconfig.write(resolved),
            self.project.write(resolved),
            self.export_options.write(resolved),
        ]
        for path in (
            self.podfile.write(),
            self.info_plist.write(resolved, self.config.app_name),
        ):
            if path is not None:
                written.append(path)
        return written
