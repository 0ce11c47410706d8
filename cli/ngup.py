#!/usr/bin/env python3
"""ngup: multi-version Angular upgrade CLI.

Usage:
    ngup upgrade --target 17
    ngup upgrade --target 17 --dry-run
    ngup analyze --path ./my-app
    ngup checkpoints list
    ngup rollback step-16 --preserve src/environments/environment.ts
    ngup rollback --last-good
"""

import argparse
import dataclasses
import os
import sys
from pathlib import Path

# Ensure cli package is importable
_cli_dir = os.path.dirname(os.path.abspath(__file__))
_root_dir = os.path.dirname(_cli_dir)
if _root_dir not in sys.path:
    sys.path.insert(0, _root_dir)

from cli import _output as out  # noqa: E402
from upgrade_factory.analyzer import ProjectAnalyzer  # noqa: E402
from upgrade_factory.checkpoints import CheckpointStore  # noqa: E402
from upgrade_factory.config import (  # noqa: E402
    CHECKPOINT_FREQUENCIES,
    PROJECT_CONFIG_NAME,
    ROLLBACK_POLICIES,
    STRATEGIES,
    VALIDATION_LEVELS,
    load_config,
    save_config,
)
from upgrade_factory.errors import UpgradeFactoryError  # noqa: E402
from upgrade_factory.installer import DependencyInstaller  # noqa: E402
from upgrade_factory.log import configure_logging  # noqa: E402
from upgrade_factory.orchestrator import UpgradeOrchestrator  # noqa: E402
from upgrade_factory.rollback import RollbackEngine, RollbackOptions  # noqa: E402


def output(args, data):
    """Print data as JSON or formatted."""
    if getattr(args, "json_output", False):
        out.out_json(data)
    elif isinstance(data, list):
        if data and isinstance(data[0], dict):
            print(out.table(data))
        else:
            for item in data:
                print(item)
    elif isinstance(data, dict):
        print(out.kv(data))
    else:
        print(data)


# ── Context ──


def _project(args) -> Path:
    return Path(args.path).resolve()


def _config(args):
    cfg = load_config(_project(args), getattr(args, "config", None))
    log_dir = cfg.log_dir or _project(args) / cfg.checkpoints.meta_dir / "logs"
    configure_logging(Path(log_dir), verbose=args.verbose)
    return cfg


def _store(args, cfg) -> CheckpointStore:
    return CheckpointStore(
        _project(args), cfg.checkpoints,
        storage_root=cfg.upgrade.backup_path, validation=cfg.validation,
    )


def _engine(args, cfg) -> RollbackEngine:
    store = _store(args, cfg)
    return RollbackEngine(store, installer=DependencyInstaller(_project(args), cfg.installer))


def _snapshot_row(s) -> dict:
    return {
        "id": s.id,
        "version": s.version,
        "created": s.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
        "size": out.human_size(s.metadata.project_size),
        "build": s.metadata.build_status,
        "test": s.metadata.test_status,
        "description": s.description,
    }


def _rollback_dict(r) -> dict:
    return {
        "success": r.success,
        "checkpoint": r.checkpoint.id if r.checkpoint else None,
        "preserved_files": r.preserved_files,
        "warnings": r.warnings,
        "error": r.error,
        "reason": r.reason,
        "backup_id": r.backup_id,
    }


# ── Command handlers ──


def cmd_upgrade(args):
    cfg = _config(args)
    overrides = {"target_version": args.target}
    for attr, value in (
        ("strategy", args.strategy),
        ("validation_level", args.validation),
        ("rollback_policy", args.rollback_policy),
        ("checkpoint_frequency", args.checkpoints),
        ("backup_path", args.backup_path),
    ):
        if value is not None:
            overrides[attr] = value
    if args.no_install:
        overrides["install_dependencies"] = False
    if args.no_schematics:
        overrides["run_schematics"] = False
    if args.parallel:
        overrides["parallel_processing"] = True
    options = dataclasses.replace(cfg.upgrade, **overrides)

    orch = UpgradeOrchestrator(_project(args), options, config=cfg)
    if args.dry_run:
        plan = orch.plan()
        if args.json_output:
            out.out_json(plan.to_dict())
            return 0
        print(out.bold(f"Upgrade plan {plan.path.from_version.full} → {plan.path.to_version.full}"))
        output(args, [
            {"step": s.label, "required": s.required, "breaking_changes": len(s.breaking_changes)}
            for s in plan.path.steps
        ])
        print(out.kv({
            "estimated_minutes": plan.estimated_minutes,
            "complexity": plan.complexity["score"],
            "risk": plan.analysis.risk.overall,
            "checkpoints": plan.checkpoints,
            "manual_changes": plan.manual_changes,
        }))
        return 0

    result = orch.run()
    summary = result.summary()
    if args.json_output:
        summary["state_history"] = result.state_history
        out.out_json(summary)
    else:
        for step in result.completed_steps:
            print(out.step_line(step.label, "completed"))
        if result.failed_step:
            print(out.step_line(result.failed_step.label, "failed"))
        print(out.kv(summary, [k for k in summary if k not in ("completed_steps", "failed_step", "warnings")]))
        for w in result.warnings:
            out.warn(w)
        if result.success:
            out.info(f"Upgraded to Angular {result.to_version}")
        else:
            out.error(f"Upgrade failed: {result.error}")
            if result.rolled_back and result.rollback_succeeded:
                out.info(f"Rolled back to {result.rollback_checkpoint}")
            elif result.rolled_back:
                out.error(f"Rollback failed: {result.rollback_error}")
    return 0 if result.success else 1


def cmd_analyze(args):
    cfg = _config(args)
    analysis = ProjectAnalyzer(_project(args), parallel=cfg.upgrade.parallel_processing).analyze()
    if args.json_output:
        out.out_json(analysis.to_dict())
        return 0
    m = analysis.code_metrics
    print(out.kv({
        "angular": analysis.current_version.full,
        "project_type": analysis.project_type,
        "build_system": analysis.build_system,
        "files": m.total_files,
        "components": m.component_count,
        "services": m.service_count,
        "modules": m.module_count,
        "lines_of_code": m.lines_of_code,
        "risk": analysis.risk.overall,
    }))
    for factor in analysis.risk.factors:
        out.warn(f"{factor.description}: {factor.impact}")
    for mitigation in analysis.risk.mitigations:
        print(f"  - {mitigation}")
    return 0


def cmd_checkpoints_list(args):
    store = _store(args, _config(args))
    output(args, [_snapshot_row(s) for s in store.list()])
    return 0


def cmd_checkpoints_create(args):
    store = _store(args, _config(args))
    store.initialize()
    snapshot = store.create(args.id, args.description, capture_status=not args.no_status)
    if args.json_output:
        out.out_json(snapshot.to_dict())
    else:
        out.info(f"Checkpoint {snapshot.id} created ({snapshot.version})")
    return 0


def cmd_checkpoints_delete(args):
    _store(args, _config(args)).delete(args.id)
    out.info(f"Checkpoint {args.id} deleted")
    return 0


def cmd_checkpoints_validate(args):
    validation = _store(args, _config(args)).validate(args.id)
    output(args, {"id": args.id, "valid": validation["valid"], "errors": validation["errors"]})
    return 0 if validation["valid"] else 1


def cmd_checkpoints_cleanup(args):
    cfg = _config(args)
    keep = args.keep if args.keep is not None else cfg.checkpoints.keep_count
    deleted = _store(args, cfg).cleanup_old(keep)
    output(args, {"kept": keep, "deleted": deleted})
    return 0


def cmd_checkpoints_size(args):
    size = _store(args, _config(args)).size(args.id)
    output(args, {"id": args.id, "bytes": size, "size": out.human_size(size)})
    return 0


def cmd_rollback(args):
    engine = _engine(args, _config(args))

    if args.plan or args.check:
        if not args.id:
            out.error("A checkpoint id is required")
            return 1
        if args.plan:
            output(args, dataclasses.asdict(engine.build_plan(args.id)))
            return 0
        report = engine.assess_feasibility(args.id)
        output(args, dataclasses.asdict(report))
        return 0 if report.feasible else 1

    if args.progressive:
        results = engine.progressive_rollback(args.until)
        output(args, [_rollback_dict(r) for r in results])
        return 0 if results and results[-1].clean else 1

    options = RollbackOptions(
        preserve_files=args.preserve or [],
        backup_before_rollback=args.backup,
        validate_after_rollback=args.validate,
        reinstall_dependencies=args.reinstall,
    )
    if args.last_good:
        result = engine.rollback_to_last_good(options)
    elif not args.id:
        out.error("A checkpoint id, --last-good or --progressive is required")
        return 1
    elif args.only:
        result = engine.selective_rollback(args.id, args.only, options)
    else:
        result = engine.rollback_to(args.id, options)

    output(args, _rollback_dict(result))
    return 0 if result.success else 1


def cmd_config(args):
    cfg = _config(args)
    if args.save:
        target = _project(args) / PROJECT_CONFIG_NAME
        save_config(cfg, target)
        out.info(f"Config written to {target}")
        return 0
    data = dataclasses.asdict(cfg)
    if args.json_output:
        out.out_json(data)
    else:
        for section, values in data.items():
            print(out.bold(section))
            print(out.kv(values) if isinstance(values, dict) else f"  {values}")
    return 0


# ── Parser ──


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="ngup",
        description="Multi-version Angular upgrades with checkpoints and rollback",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Examples:
  ngup upgrade --target 17                     Upgrade step by step to 17
  ngup upgrade --target 17 --dry-run           Show the plan only
  ngup checkpoints list                        List checkpoints
  ngup rollback initial --preserve .env        Restore, keep .env
  ngup rollback --last-good                    Newest checkpoint with a green build
""",
    )

    # Global flags
    p.add_argument("--path", default=".", help="Angular project root")
    p.add_argument("--config", help="Config file (default: user + project config)")
    p.add_argument("--json", dest="json_output", action="store_true", help="Raw JSON output")
    p.add_argument("--no-color", action="store_true", help="Disable colors")
    p.add_argument("-v", "--verbose", action="store_true")

    sub = p.add_subparsers(dest="command", help="Command")

    # ── upgrade ──
    up = sub.add_parser("upgrade", help="Run a multi-version upgrade")
    up.add_argument("--target", required=True, help="Target Angular major version")
    up.add_argument("--strategy", choices=STRATEGIES)
    up.add_argument("--validation", choices=VALIDATION_LEVELS)
    up.add_argument("--rollback-policy", dest="rollback_policy", choices=ROLLBACK_POLICIES)
    up.add_argument("--checkpoints", choices=CHECKPOINT_FREQUENCIES)
    up.add_argument("--backup-path", dest="backup_path", help="Checkpoint storage root")
    up.add_argument("--dry-run", dest="dry_run", action="store_true", help="Plan only")
    up.add_argument("--no-install", dest="no_install", action="store_true", help="Skip npm install")
    up.add_argument("--no-schematics", dest="no_schematics", action="store_true", help="Skip ng update")
    up.add_argument("--parallel", action="store_true", help="Parallel read-only analysis")
    up.set_defaults(func=cmd_upgrade)

    # ── analyze ──
    sub.add_parser("analyze", help="Analyze the project").set_defaults(func=cmd_analyze)

    # ── checkpoints ──
    cp = sub.add_parser("checkpoints", help="Checkpoint management")
    cp_sub = cp.add_subparsers(dest="subcmd")

    cp_sub.add_parser("list", help="List checkpoints").set_defaults(func=cmd_checkpoints_list)

    cc = cp_sub.add_parser("create", help="Create a checkpoint")
    cc.add_argument("--id", default=None)
    cc.add_argument("--description", "-d", default="Manual checkpoint")
    cc.add_argument("--no-status", dest="no_status", action="store_true", help="Skip build/test probes")
    cc.set_defaults(func=cmd_checkpoints_create)

    cd = cp_sub.add_parser("delete", help="Delete a checkpoint")
    cd.add_argument("id")
    cd.set_defaults(func=cmd_checkpoints_delete)

    cv = cp_sub.add_parser("validate", help="Validate a checkpoint")
    cv.add_argument("id")
    cv.set_defaults(func=cmd_checkpoints_validate)

    cl = cp_sub.add_parser("cleanup", help="Keep only the newest checkpoints")
    cl.add_argument("--keep", type=int, default=None)
    cl.set_defaults(func=cmd_checkpoints_cleanup)

    cs = cp_sub.add_parser("size", help="Checkpoint size")
    cs.add_argument("id")
    cs.set_defaults(func=cmd_checkpoints_size)

    # ── rollback ──
    rb = sub.add_parser("rollback", help="Restore a checkpoint")
    rb.add_argument("id", nargs="?")
    rb.add_argument("--preserve", nargs="+", metavar="PATH", help="Keep current content of these files")
    rb.add_argument("--backup", action="store_true", help="Checkpoint the current state first")
    rb.add_argument("--validate", action="store_true", help="Check the restored tree")
    rb.add_argument("--reinstall", action="store_true", help="npm ci after restoring")
    rb.add_argument("--last-good", dest="last_good", action="store_true")
    rb.add_argument("--progressive", action="store_true", help="Undo one checkpoint at a time")
    rb.add_argument("--until", default=None, help="Stop progressive rollback before this id")
    rb.add_argument("--only", nargs="+", metavar="PATH", help="Restore only these paths")
    rb.add_argument("--plan", action="store_true", help="Show the rollback plan")
    rb.add_argument("--check", action="store_true", help="Feasibility check only")
    rb.set_defaults(func=cmd_rollback)

    # ── config ──
    cf = sub.add_parser("config", help="Show effective config")
    cf.add_argument("--save", action="store_true", help=f"Write it to {PROJECT_CONFIG_NAME}")
    cf.set_defaults(func=cmd_config)

    return p


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if getattr(args, "no_color", False):
        out.NO_COLOR = True

    if not hasattr(args, "func") or args.func is None:
        parser.print_help()
        return 0

    try:
        return args.func(args)
    except KeyboardInterrupt:
        print()
        return 130
    except UpgradeFactoryError as e:
        if args.verbose:
            import traceback

            traceback.print_exc()
        else:
            out.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
