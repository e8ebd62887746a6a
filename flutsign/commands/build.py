from flutsign.logger import log_info
from flutsign.src.build.orchestrator import BuildOrchestrator
from flutsign.src.utils.config_loader import build_config


def run_build_command(args) -> int:
    config = build_config(args)
    log_info("🚀 Starting iOS build process...")
    log_info(f"App: {config.app_name or 'Unknown'} v{config.version_name or '?'} ({config.version_code or '?'})")

    artifact = BuildOrchestrator(config).run()
    log_info(f"IPA: {config.output_dir / artifact.package_path.name}")
    return 0
