import argparse
import sys
from dataclasses import replace
from pathlib import Path

from arch_installer.app.flow import InstallationFlow
from arch_installer.config.settings import InstallerConfig, load_settings
from arch_installer.exceptions import InstallerError
from arch_installer.logging import LoggerFactory, setup_logging
from arch_installer.services.packages import ensure_packages
from arch_installer.services.preconditions import PreconditionChecker
from arch_installer.ui.dialog import Dialog


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Arch Linux Installer")
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--trace", action="store_true", help="Enable trace-level logging")
    parser.add_argument("--log-file", type=Path, help="Append-only installation log")
    parser.add_argument("--settings", type=Path, help="key=value settings file")
    parser.add_argument("--stage-config", type=Path, help="Where the disk layout is saved")
    parser.add_argument("--mount-root", type=Path, help="Mount point of the new root")
    parser.add_argument(
        "--skip-packages",
        action="store_true",
        help="Do not check for or install dialog and curl",
    )
    return parser


def config_from_args(args: argparse.Namespace) -> InstallerConfig:
    config = InstallerConfig()
    overrides = {
        "log_file": args.log_file,
        "settings_path": args.settings,
        "stage_config_path": args.stage_config,
        "mount_root": args.mount_root,
    }
    return replace(config, **{key: value for key, value in overrides.items() if value is not None})


def main(argv=None):
    args = build_parser().parse_args(argv)
    config = config_from_args(args)
    setup_logging(config.log_file, debug=args.debug, trace=args.trace)
    log = LoggerFactory.for_system()
    log.info(f"Installer started (log: {config.log_file})")

    try:
        PreconditionChecker().verify()
        if not args.skip_packages:
            ensure_packages()
    except InstallerError as error:
        log.error(f"Startup failed: {error}")
        print(f"Error: {error}\nCheck {config.log_file} for details.", file=sys.stderr)
        return 1

    settings = load_settings(config.settings_path)
    prompter = Dialog()
    flow = InstallationFlow.build(config, prompter, settings)
    try:
        exit_code = flow.run()
    except KeyboardInterrupt:
        log.warning("Interrupted by operator")
        return 130
    flow.show_log()
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
