import json
import plistlib
import re
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple
from xml.parsers.expat import ExpatError

from asn1crypto.cms import ContentInfo
from rich.console import Console
from rich.table import Table

from flutsign.logger import log_success, log_warning
from flutsign.src.core.errors import DecodeError, MissingFieldError

UUID_PATTERN = re.compile(
    r"[A-Fa-f0-9]{8}-[A-Fa-f0-9]{4}-[A-Fa-f0-9]{4}-[A-Fa-f0-9]{4}-[A-Fa-f0-9]{12}"
)

PROFILES_HOME = Path.home() / "Library" / "MobileDevice" / "Provisioning Profiles"


@dataclass(frozen=True)
class SigningProfile:
    """Values read from a decoded provisioning profile"""

    path: Path
    uuid: str
    team_identifier: str
    bundle_identifier: str
    application_identifier: str
    name: Optional[str] = None
    expiration_date: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expiration_date is None:
            return False
        now = now or datetime.now(timezone.utc)
        expiration = self.expiration_date
        if expiration.tzinfo is None:
            expiration = expiration.replace(tzinfo=timezone.utc)
        return expiration <= now


def _looks_like_plist(data: bytes) -> bool:
    head = data.lstrip()[:64]
    return head.startswith(b"<?xml") or head.startswith(b"<plist") or head.startswith(b"bplist")


def dump_prov(prov_file: Path) -> Tuple[dict, bytes]:
    """Read a provisioning profile without using macOS security command.

    Returns the parsed plist and its raw bytes. Raises DecodeError.
    """
    try:
        data = Path(prov_file).read_bytes()
    except OSError as e:
        raise DecodeError(prov_file, str(e)) from e

    if not data:
        raise DecodeError(prov_file, "file is empty")

    if _looks_like_plist(data):
        plist_data = data
    else:
        try:
            content_info = ContentInfo.load(data)
            signed_data = content_info["content"]
            # The actual plist is the encapsulated content of the signed data
            plist_data = signed_data["encap_content_info"]["content"].native
        except (ValueError, TypeError, KeyError) as e:
            raise DecodeError(prov_file, f"not a CMS signed container ({e})") from e

    if not plist_data:
        raise DecodeError(prov_file, "signed container has no content")

    try:
        profile = plistlib.loads(plist_data)
    except (plistlib.InvalidFileException, ValueError, ExpatError) as e:
        raise DecodeError(prov_file, f"embedded property list is invalid ({e})") from e

    if not isinstance(profile, dict):
        raise DecodeError(prov_file, "embedded property list is not a dictionary")

    return profile, plist_data


def _bundle_from_app_identifier(app_identifier: Any) -> str:
    """TEAMID.com.example.app -> com.example.app"""
    if not isinstance(app_identifier, str) or "." not in app_identifier:
        return ""
    return app_identifier.split(".", 1)[1].strip()


def _first(value: Any) -> str:
    if isinstance(value, list) and value:
        value = value[0]
    return value.strip() if isinstance(value, str) else ""


class ProfileDecoder:
    """Decodes a provisioning profile and extracts its signing fields.

    Each field has two extraction tiers. The second tier is only tried when
    the first yields an empty value, and MissingFieldError is raised only
    when both are empty.
    """

    def decode(self, path: Path) -> SigningProfile:
        data, raw = dump_prov(path)

        uuid = self._extract(
            "UUID",
            lambda: data.get("UUID") if isinstance(data.get("UUID"), str) else "",
            lambda: self._scan_uuid(raw),
            path,
        )
        team_id = self._extract(
            "TeamIdentifier",
            lambda: _first(data.get("TeamIdentifier")),
            lambda: self._team_from_entitlements(data),
            path,
        )
        app_identifier = self._app_identifier(data)
        bundle_id = self._extract(
            "application-identifier",
            lambda: _bundle_from_app_identifier(
                self._entitlements(data).get("application-identifier")
            ),
            lambda: _bundle_from_app_identifier(
                self._entitlements(data).get("com.apple.application-identifier")
            ),
            path,
        )

        expiration = data.get("ExpirationDate")
        profile = SigningProfile(
            path=Path(path),
            uuid=uuid,
            team_identifier=team_id,
            bundle_identifier=bundle_id,
            application_identifier=app_identifier,
            name=data.get("Name"),
            expiration_date=expiration if isinstance(expiration, datetime) else None,
        )

        log_success(f"Extracted UUID from profile: {profile.uuid}")
        log_success(f"Extracted Team ID from profile: {profile.team_identifier}")
        log_success(f"Extracted Bundle ID from profile: {profile.bundle_identifier}")
        if profile.is_expired():
            log_warning(f"Provisioning profile expired on {profile.expiration_date}")
        return profile

    @staticmethod
    def _extract(
        field: str,
        primary: Callable[[], str],
        fallback: Callable[[], str],
        path: Path,
    ) -> str:
        value = (primary() or "").strip()
        if value:
            return value

        log_warning(f"Primary {field} extraction failed, trying fallback method...")
        value = (fallback() or "").strip()
        if value:
            log_success(f"Extracted {field} using fallback method: {value}")
            return value

        raise MissingFieldError(field, f"both extraction methods failed for {path}")

    @staticmethod
    def _entitlements(data: dict) -> dict:
        entitlements = data.get("Entitlements")
        return entitlements if isinstance(entitlements, dict) else {}

    def _app_identifier(self, data: dict) -> str:
        entitlements = self._entitlements(data)
        for key in ("application-identifier", "com.apple.application-identifier"):
            value = entitlements.get(key)
            if isinstance(value, str) and value:
                return value
        return ""

    def _team_from_entitlements(self, data: dict) -> str:
        team_id = self._entitlements(data).get("com.apple.developer.team-identifier")
        if isinstance(team_id, str) and team_id.strip():
            return team_id.strip()
        return _first(data.get("ApplicationIdentifierPrefix"))

    @staticmethod
    def _scan_uuid(raw: bytes) -> str:
        match = UUID_PATTERN.search(raw.decode("utf-8", errors="ignore"))
        return match.group(0).upper() if match else ""


def install_profile(profile: SigningProfile, profiles_dir: Path = PROFILES_HOME) -> Path:
    """Copy the profile where Xcode looks it up by UUID"""
    profiles_dir = Path(profiles_dir)
    profiles_dir.mkdir(parents=True, exist_ok=True)
    destination = profiles_dir / f"{profile.uuid}.mobileprovision"
    if Path(profile.path).resolve() != destination.resolve():
        shutil.copyfile(profile.path, destination)
    log_success(f"Installed provisioning profile to {destination}")
    return destination


def print_profile_summary(console: Console, profile: SigningProfile) -> None:
    table = Table(title="Provisioning Profile")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Name", profile.name or "-")
    table.add_row("UUID", profile.uuid)
    table.add_row("Team ID", profile.team_identifier)
    table.add_row("Application ID", profile.application_identifier or "-")
    table.add_row("Bundle ID", profile.bundle_identifier)
    expiration = str(profile.expiration_date) if profile.expiration_date else "-"
    if profile.is_expired():
        expiration = f"[red]{expiration} (expired)[/red]"
    table.add_row("Expires", expiration)
    console.print(table)


def print_entitlements(console: Console, data: dict) -> None:
    entitlements = data.get("Entitlements", {})
    keys: List[str] = sorted(entitlements) if isinstance(entitlements, dict) else []
    console.print(f"\n[bold]Entitlements ({len(keys)}):[/bold]")
    for key in keys:
        console.print(f"  • {key}")


def print_profile_contents(console: Console, data: Dict[str, Any]) -> None:
    """Print the full profile contents, excluding binary data"""
    console.print("\n[bold]Full Profile Contents:[/bold]")
    filtered_data = data.copy()
    if "DeveloperCertificates" in filtered_data:
        filtered_data["DeveloperCertificates"] = "<binary data removed>"
    if "DER-Encoded-Profile" in filtered_data:
        filtered_data["DER-Encoded-Profile"] = "<binary data removed>"
    console.print_json(json.dumps(filtered_data, default=str))
