from flutsign.logger import log_info
from flutsign.src.core.signing_pipeline import SigningPipeline, SigningState
from flutsign.src.utils.config_loader import build_config


def run_resolve_signing_command(args) -> int:
    config = build_config(args)
    log_info(f"Configuring code signing for {config.project_dir.resolve()}")

    result = SigningPipeline(config).run()
    if result.state is SigningState.NO_PROFILE:
        # Nothing to sign with; the project is left as it is
        return 0

    for path in result.written:
        log_info(f"Wrote {path}")
    return 0
