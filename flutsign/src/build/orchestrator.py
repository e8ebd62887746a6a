import shutil
import subprocess
import time
from pathlib import Path
from typing import Callable, List, Optional

from flutsign.logger import get_console, log_error, log_info, log_success, log_warning
from flutsign.src.build.artifacts import (
    BuildArtifact,
    find_package,
    write_artifacts_summary,
)
from flutsign.src.core.errors import BuildError, ConfigurationError
from flutsign.src.core.signing_pipeline import SigningPipeline
from flutsign.src.profile.profile_fetcher import ProfileFetcher
from flutsign.src.utils.config_loader import FlutsignConfig

LOG_TAIL_LINES = 40
MAX_BACKOFF_SECONDS = 60


def run_command(
    cmd: List[str],
    step: str,
    cwd: Optional[Path] = None,
    log_path: Optional[Path] = None,
) -> str:
    """Run one external tool, keep its output, raise BuildError on failure"""
    log_info(f"Running: {' '.join(cmd)}")
    try:
        result = subprocess.run(cmd, cwd=cwd, capture_output=True, text=True)
    except FileNotFoundError as e:
        raise BuildError(step, f"{cmd[0]} is not installed") from e

    output = (result.stdout or "") + (result.stderr or "")
    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        log_path.write_text(output)

    if result.returncode != 0:
        tail = "\n".join(output.splitlines()[-LOG_TAIL_LINES:])
        log_error(f"{step} failed with exit code {result.returncode}")
        if tail:
            get_console().print(f"=== {step} output (last {LOG_TAIL_LINES} lines) ===")
            get_console().print(tail, markup=False, highlight=False)
        raise BuildError(step, f"exit code {result.returncode}", log_path)
    return output


class BuildOrchestrator:
    """Signs, builds, archives and exports the iOS app"""

    def __init__(
        self,
        config: FlutsignConfig,
        pipeline: Optional[SigningPipeline] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.pipeline = pipeline or SigningPipeline(config)
        self.sleep = sleep
        self.logs_dir = config.project_dir / "build" / "ios" / "logs"
        self.archive_path = config.project_dir / "build" / "ios" / "archive" / (
            f"{config.main_target}.xcarchive"
        )
        self.export_path = config.project_dir / "build" / "ios" / "output"

    def run(self) -> BuildArtifact:
        result = self.pipeline.run()
        if result.resolved is None:
            raise ConfigurationError(
                "A provisioning profile (PROFILE_URL) is required to build a signed IPA"
            )

        try:
            self.fetch_dependencies()
            self.pod_install()
            self.build_flutter()
            self.archive()
            artifact = self.export()
            copied = artifact.copy_to(self.config.output_dir)
            write_artifacts_summary(
                self.config.output_dir / "ARTIFACTS_SUMMARY.txt",
                artifact,
                result.resolved,
                self.config,
                self.config.export_options_path,
                logs=sorted(self.logs_dir.glob("*.log")),
            )
            if self.config.upload:
                self.upload(copied)
            else:
                log_info("Skipping App Store Connect upload (UPLOAD_TO_APP_STORE is not true)")
        finally:
            self.pipeline.cert_handler.cleanup()

        log_success("🎉 iOS build process completed successfully!")
        return artifact

    def fetch_dependencies(self) -> None:
        log_info("📦 Installing Flutter dependencies...")
        run_command(
            ["flutter", "pub", "get"],
            "flutter pub get",
            cwd=self.config.project_dir,
            log_path=self.logs_dir / "flutter_pub_get.log",
        )

    def pod_install(self) -> None:
        """One canonical `pod install`, retried with bounded exponential backoff"""
        attempts = max(self.config.pod_install_retries, 0) + 1
        for attempt in range(1, attempts + 1):
            try:
                run_command(
                    ["pod", "install"],
                    "pod install",
                    cwd=self.config.ios_dir,
                    log_path=self.logs_dir / "pod_install.log",
                )
                log_success("pod install completed successfully")
                return
            except BuildError:
                if attempt == attempts:
                    raise
                delay = min(2**attempt, MAX_BACKOFF_SECONDS)
                log_warning(
                    f"pod install failed (attempt {attempt}/{attempts}), retrying in {delay}s"
                )
                self.sleep(delay)

    def build_flutter(self) -> None:
        log_info("📱 Building Flutter iOS app in release mode...")
        cmd = ["flutter", "build", "ios", "--release", "--no-codesign"]
        if self.config.version_name:
            cmd.append(f"--build-name={self.config.version_name}")
        if self.config.version_code:
            cmd.append(f"--build-number={self.config.version_code}")
        run_command(
            cmd,
            "flutter build",
            cwd=self.config.project_dir,
            log_path=self.logs_dir / "flutter_build.log",
        )
        log_success("Flutter build completed successfully")

    def archive(self) -> Path:
        # Signing comes from the project files only. Passing signing settings
        # on the command line would apply them to the pod targets as well.
        log_info("📦 Archiving app with Xcode...")
        self.archive_path.parent.mkdir(parents=True, exist_ok=True)
        target = self.config.main_target
        run_command(
            [
                "xcodebuild",
                "-workspace",
                str(self.config.ios_dir / f"{target}.xcworkspace"),
                "-scheme",
                target,
                "-configuration",
                "Release",
                "-archivePath",
                str(self.archive_path),
                "-destination",
                "generic/platform=iOS",
                "archive",
            ],
            "xcodebuild archive",
            cwd=self.config.project_dir,
            log_path=self.logs_dir / "xcodebuild_archive.log",
        )

        app_dir = self.archive_path / "Products" / "Applications" / f"{target}.app"
        if not (app_dir / target).is_file():
            raise BuildError(
                "xcodebuild archive",
                f"{target} executable not found in {app_dir}",
                self.logs_dir / "xcodebuild_archive.log",
            )
        log_success("Xcode archive completed successfully")
        return self.archive_path

    def export(self) -> BuildArtifact:
        log_info("📤 Exporting IPA...")
        # Only an IPA written by this export counts
        if self.export_path.exists():
            shutil.rmtree(self.export_path)
        run_command(
            [
                "xcodebuild",
                "-exportArchive",
                "-archivePath",
                str(self.archive_path),
                "-exportPath",
                str(self.export_path),
                "-exportOptionsPlist",
                str(self.config.export_options_path),
            ],
            "xcodebuild export",
            cwd=self.config.project_dir,
            log_path=self.logs_dir / "xcodebuild_export.log",
        )

        ipa_path = find_package([self.export_path])
        if ipa_path is None:
            raise BuildError("xcodebuild export", "no IPA generated")
        artifact = BuildArtifact(archive_path=self.archive_path, package_path=ipa_path)
        artifact.validate()
        return artifact

    def upload(self, ipa_path: Path) -> None:
        config = self.config
        missing = [
            name
            for name, value in (
                ("APP_STORE_CONNECT_KEY_IDENTIFIER", config.asc_key_id),
                ("APP_STORE_CONNECT_ISSUER_ID", config.asc_issuer_id),
                ("APP_STORE_CONNECT_API_KEY_URL", config.asc_api_key_url),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(
                f"Upload requested but {', '.join(missing)} not set"
            )

        log_info("📤 Uploading to App Store Connect...")
        key_dir = Path.home() / "private_keys"
        ProfileFetcher(timeout=config.download_timeout).fetch(
            config.asc_api_key_url, key_dir, f"AuthKey_{config.asc_key_id}.p8"
        )
        run_command(
            [
                "xcrun",
                "altool",
                "--upload-app",
                "-f",
                str(ipa_path),
                "-t",
                "ios",
                "--apiKey",
                config.asc_key_id,
                "--apiIssuer",
                config.asc_issuer_id,
            ],
            "App Store Connect upload",
            log_path=self.logs_dir / "altool_upload.log",
        )
        log_success("App uploaded to App Store Connect")
