"""Sequences the credential chain for one build.

NO_PROFILE -> PROFILE_DOWNLOADED -> PROFILE_DECODED -> IDENTITY_INSTALLED
-> CONFIG_RESOLVED -> WRITTEN

Each stage consumes the previous stage's output. Any fatal error ends the
chain immediately; nothing is retried.
"""

import tempfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

from rich.table import Table

from flutsign.logger import get_console, log_info, log_success, log_warning
from flutsign.src.build.artifacts import write_signing_summary
from flutsign.src.core.cert_handler import CertHandler, Certificate, SigningIdentity
from flutsign.src.core.errors import BundleIdMismatchWarning, SigningWarning
from flutsign.src.core.signing_resolver import ResolvedSigningConfig, resolve_signing
from flutsign.src.profile.profile_fetcher import ProfileFetcher
from flutsign.src.profile.provisioning_profile_analyser import (
    PROFILES_HOME,
    ProfileDecoder,
    SigningProfile,
    install_profile,
)
from flutsign.src.utils.config_loader import FlutsignConfig
from flutsign.src.xcode.project_writer import ProjectSigningWriter


class SigningState(Enum):
    NO_PROFILE = "NO_PROFILE"
    PROFILE_DOWNLOADED = "PROFILE_DOWNLOADED"
    PROFILE_DECODED = "PROFILE_DECODED"
    IDENTITY_INSTALLED = "IDENTITY_INSTALLED"
    CONFIG_RESOLVED = "CONFIG_RESOLVED"
    WRITTEN = "WRITTEN"


@dataclass
class SigningResult:
    state: SigningState
    profile: Optional[SigningProfile] = None
    resolved: Optional[ResolvedSigningConfig] = None
    warnings: List[SigningWarning] = field(default_factory=list)
    identities: List[SigningIdentity] = field(default_factory=list)
    written: List[Path] = field(default_factory=list)


class SigningPipeline:
    def __init__(
        self,
        config: FlutsignConfig,
        fetcher: Optional[ProfileFetcher] = None,
        decoder: Optional[ProfileDecoder] = None,
        cert_handler: Optional[CertHandler] = None,
        profiles_dir: Optional[Path] = None,
    ):
        self.config = config
        self.fetcher = fetcher or ProfileFetcher(timeout=config.download_timeout)
        self.decoder = decoder or ProfileDecoder()
        self.cert_handler = cert_handler or CertHandler()
        self.profiles_dir = profiles_dir or PROFILES_HOME
        self.state = SigningState.NO_PROFILE

    def _advance(self, state: SigningState) -> None:
        log_info(f"Signing state: {self.state.value} → {state.value}")
        self.state = state

    def run(self) -> SigningResult:
        self.state = SigningState.NO_PROFILE
        work_root = self.config.work_dir
        if work_root is not None:
            Path(work_root).mkdir(parents=True, exist_ok=True)

        # Downloaded credentials never outlive this call
        with tempfile.TemporaryDirectory(prefix="flutsign-", dir=work_root) as tmp:
            return self._run(Path(tmp))

    def _run(self, work_dir: Path) -> SigningResult:
        config = self.config

        profile_path = self.fetcher.fetch(
            config.profile_url, work_dir, "profile.mobileprovision"
        )
        if profile_path is None:
            log_warning("PROFILE_URL not provided, skipping code signing configuration")
            return SigningResult(state=self.state)
        self._advance(SigningState.PROFILE_DOWNLOADED)

        profile = self.decoder.decode(profile_path)
        self._advance(SigningState.PROFILE_DECODED)
        install_profile(profile, self.profiles_dir)
        profile_path.unlink(missing_ok=True)

        certificate = self._prepare_certificate(work_dir)
        try:
            identities = self.cert_handler.install(certificate)
            self._advance(SigningState.IDENTITY_INSTALLED)

            resolved, warnings = self._resolve(profile)
            self._advance(SigningState.CONFIG_RESOLVED)

            written = ProjectSigningWriter(config).write(resolved)
            written.append(write_signing_summary(config.summary_path, resolved, config))
            self._advance(SigningState.WRITTEN)
        except Exception:
            # The temporary keychain only outlives a successful run
            self.cert_handler.cleanup()
            raise

        print_signing_summary(resolved)
        return SigningResult(
            state=self.state,
            profile=profile,
            resolved=resolved,
            warnings=warnings,
            identities=identities,
            written=written,
        )

    def _resolve(self, profile: SigningProfile):
        config = self.config
        resolved, warnings = resolve_signing(
            env_bundle_id=config.bundle_id,
            env_team_id=config.team_id,
            profile_bundle_id=profile.bundle_identifier,
            profile_team_id=profile.team_identifier,
            profile_uuid=profile.uuid,
            placeholder_bundle_ids=config.placeholder_bundle_ids,
            identity_name=config.identity_name,
            policy=config.mismatch_policy,
        )
        for warning in warnings:
            log_warning(str(warning))
            if isinstance(warning, BundleIdMismatchWarning):
                log_info("This might cause signing issues. Consider updating the provisioning profile.")
        return resolved, warnings

    def _prepare_certificate(self, work_dir: Path) -> Optional[Certificate]:
        config = self.config
        cert_type = config.cert_type
        if (
            cert_type == "p12"
            and not config.cert_p12_url
            and config.cert_cer_url
            and config.cert_key_url
        ):
            log_info("No P12 provided but CER/KEY are set, using manual certificate setup")
            cert_type = "manual"
        log_info(f"Certificate type: {cert_type}")

        if cert_type == "manual":
            cer_path = self.fetcher.fetch(config.cert_cer_url, work_dir, "certificate.cer")
            key_path = self.fetcher.fetch(config.cert_key_url, work_dir, "certificate.key")
            return self.cert_handler.prepare_certificate(
                cert_type,
                config.cert_password,
                work_dir,
                cer_path=cer_path,
                key_path=key_path,
            )

        p12_path = self.fetcher.fetch(config.cert_p12_url, work_dir, "certificate.p12")
        return self.cert_handler.prepare_certificate(
            cert_type, config.cert_password, work_dir, p12_path=p12_path
        )


def print_signing_summary(resolved: ResolvedSigningConfig) -> None:
    table = Table(title="Resolved Signing Configuration")
    table.add_column("Variable", style="cyan")
    table.add_column("Value")
    table.add_column("Source", style="magenta")
    table.add_row("BUNDLE_ID", resolved.bundle_id, resolved.bundle_id_source.value)
    table.add_row("APPLE_TEAM_ID", resolved.team_id, resolved.team_id_source.value)
    table.add_row("UUID", resolved.profile_uuid, "profile")
    table.add_row("CODE_SIGN_IDENTITY", resolved.cert_identity_name, "config")
    get_console().print(table)
    log_success("Signing configuration completed")
