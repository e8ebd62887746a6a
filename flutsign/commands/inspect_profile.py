from flutsign.logger import get_console
from flutsign.src.profile.provisioning_profile_analyser import (
    ProfileDecoder,
    dump_prov,
    print_entitlements,
    print_profile_contents,
    print_profile_summary,
)


def run_inspect_profile_command(args) -> int:
    console = get_console()
    profile = ProfileDecoder().decode(args.profile_path)
    print_profile_summary(console, profile)

    data, _ = dump_prov(args.profile_path)
    print_entitlements(console, data)
    if args.full:
        print_profile_contents(console, data)
    return 0
