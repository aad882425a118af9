"""Main CLI entrypoint for solarops."""

import json
import logging
import sys
from datetime import datetime
from typing import Any, Callable, Dict, Tuple

import click

from .. import console, workflows
from ..config import load_settings, Settings
from ..events import read_events, get_status_from_events, tail_events, EventTypes
from ..state import list_runs, run_exists, read_run_json

EXIT_CODES = {
    workflows.SUCCEEDED: 0,
    workflows.CANCELLED: 0,
    workflows.FAILED: 1,
}


@click.group()
@click.option('--config', 'config_path', type=click.Path(dir_okay=False), help='YAML settings file')
@click.option('--region', help='AWS region')
@click.option('--cluster-name', help='EKS cluster name')
@click.option('--terraform-dir', help='Directory holding the Terraform configuration')
@click.option('--json', 'output_json', is_flag=True, help='Output machine-readable JSON')
@click.option('-v', '--verbose', is_flag=True, help='Enable debug logging')
@click.pass_context
def main(ctx, config_path, region, cluster_name, terraform_dir, output_json, verbose):
    """solarops - Deploy and tear down the Solar System app on AWS EKS."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    console.use_stderr(output_json)

    ctx.ensure_object(dict)
    ctx.obj['json'] = output_json
    ctx.obj['config_path'] = config_path
    ctx.obj['overrides'] = {
        'region': region,
        'cluster_name': cluster_name,
        'terraform_dir': terraform_dir,
    }


def _settings(ctx) -> Settings:
    try:
        return load_settings(ctx.obj.get('config_path'), ctx.obj.get('overrides'))
    except (ValueError, FileNotFoundError) as e:
        raise click.UsageError(str(e))


def _json_output(data: Dict[str, Any]) -> None:
    click.echo(json.dumps(data, indent=None, default=str))


def _prompts(assume_yes: bool, word: str = "") -> Tuple[Callable[[str], bool], Callable[[str], str]]:
    """Confirmation callables; with --yes every question is answered affirmatively."""
    if assume_yes:
        return (lambda message: True), (lambda message: word)

    def confirm(message: str) -> bool:
        return click.confirm(message, default=False, err=True)

    def ask(message: str) -> str:
        return click.prompt(message, default="", show_default=False, err=True).strip()

    return confirm, ask


def _finish(ctx, result: Dict[str, Any]) -> None:
    if ctx.obj.get('json'):
        _json_output(result)
    else:
        click.echo(f"Run {result.get('run_id')}: {result.get('status')}")
    sys.exit(EXIT_CODES.get(result.get('status'), 1))


def _run_workflow(ctx, runner: Callable[[], Dict[str, Any]]) -> None:
    try:
        result = runner()
    except KeyboardInterrupt:
        console.error("Interrupted by user")
        sys.exit(1)
    _finish(ctx, result)


@main.command()
@click.option('--yes', is_flag=True, help='Skip the cost confirmation')
@click.pass_context
def deploy(ctx, yes):
    """Deploy the EKS stack with Terraform and wait for the app."""
    settings = _settings(ctx)
    confirm, _ = _prompts(yes)
    _run_workflow(ctx, lambda: workflows.deploy_terraform(settings, confirm))


@main.command()
@click.option('--yes', is_flag=True, help='Answer yes to every prompt, including removing the tfvars file')
@click.pass_context
def destroy(ctx, yes):
    """Destroy everything Terraform created."""
    settings = _settings(ctx)
    confirm, ask = _prompts(yes, "DESTROY")
    _run_workflow(ctx, lambda: workflows.destroy_terraform(settings, confirm, ask))


@main.command()
@click.option('--yes', is_flag=True, help='Skip the DELETE confirmation')
@click.option('--delete-iam/--keep-iam', default=None, help='Delete IAM roles created by eksctl (asks if omitted)')
@click.pass_context
def cleanup(ctx, yes, delete_iam):
    """Delete the cluster and all AWS leftovers (eksctl, stacks, VPC, IAM)."""
    settings = _settings(ctx)
    confirm, ask = _prompts(yes, "DELETE")
    if yes and delete_iam is None:
        delete_iam = False
    _run_workflow(ctx, lambda: workflows.cleanup_aws(settings, confirm, ask, delete_iam=delete_iam))


@main.command('quick-cleanup')
@click.option('--yes', is_flag=True, help='Skip the confirmation')
@click.pass_context
def quick_cleanup(ctx, yes):
    """Delete LoadBalancers and the namespace, then the cluster via eksctl."""
    settings = _settings(ctx)
    _, ask = _prompts(yes, "yes")
    _run_workflow(ctx, lambda: workflows.quick_cleanup(settings, ask))


@main.command('setup-cluster')
@click.pass_context
def setup_cluster(ctx):
    """Create the EKS cluster with eksctl."""
    settings = _settings(ctx)
    _run_workflow(ctx, lambda: workflows.setup_cluster(settings))


@main.command()
@click.pass_context
def runs(ctx):
    """List recorded runs, most recent first."""
    rows = []
    for run_id in list_runs():
        try:
            workflow = read_run_json(run_id).get('workflow', 'unknown')
        except FileNotFoundError:
            workflow = 'unknown'
        rows.append({'run_id': run_id, 'workflow': workflow, 'status': get_status_from_events(run_id)})

    if ctx.obj.get('json'):
        _json_output({'runs': rows})
        return

    if not rows:
        click.echo("No runs recorded")
    for row in rows:
        click.echo(f"{row['run_id']}  {row['workflow']:<14} {_styled_status(row['status'])}")


def _require_run(ctx, run_id: str) -> None:
    try:
        found = run_exists(run_id)
    except ValueError:
        found = False

    if not found:
        error_msg = f"Run {run_id} not found"
        if ctx.obj.get('json'):
            _json_output({'error': error_msg})
        else:
            console.error(error_msg)
        sys.exit(2)


@main.command()
@click.argument('run_id')
@click.pass_context
def status(ctx, run_id):
    """Show the status of a run."""
    _require_run(ctx, run_id)

    events = read_events(run_id)
    info = {
        'run_id': run_id,
        'workflow': read_run_json(run_id).get('workflow'),
        'status': get_status_from_events(run_id),
        'events': len(events),
        'last_event': events[-1] if events else None,
    }

    if ctx.obj.get('json'):
        _json_output(info)
        return

    click.echo(f"Run: {run_id}")
    click.echo(f"Workflow: {info['workflow']}")
    click.echo(f"Status: {_styled_status(info['status'])}")
    if events:
        click.echo("\nRecent Events:")
        for event in events[-5:]:
            _print_event_human(event)


@main.command()
@click.argument('run_id')
@click.option('--follow', is_flag=True, help='Keep following until the run finishes')
@click.pass_context
def logs(ctx, run_id, follow):
    """Show the event log of a run."""
    _require_run(ctx, run_id)

    try:
        for event in tail_events(run_id, follow=follow):
            if ctx.obj.get('json'):
                _json_output(event)
            else:
                _print_event_human(event)
    except KeyboardInterrupt:
        click.echo("\nStopped following logs")


def _styled_status(status: str) -> str:
    colors = {'succeeded': 'green', 'failed': 'red', 'cancelled': 'yellow'}
    return click.style(status, fg=colors.get(status, 'white'))


def _print_event_human(event: Dict[str, Any]) -> None:
    event_type = event.get('type', 'UNKNOWN')
    timestamp = event.get('ts', '')

    try:
        time_str = datetime.fromisoformat(timestamp).strftime('%H:%M:%S')
    except (TypeError, ValueError):
        time_str = timestamp

    if event_type in (EventTypes.DONE, EventTypes.PREREQS_OK, EventTypes.APP_READY, EventTypes.SMOKE_OK):
        color = 'green'
    elif event_type in (EventTypes.ERROR, EventTypes.SMOKE_FAIL):
        color = 'red'
    elif event_type in (EventTypes.WARNING, EventTypes.CANCELLED, EventTypes.CONFIRM_DECLINED):
        color = 'yellow'
    elif event_type.startswith('TF_'):
        color = 'blue'
    else:
        color = 'white'

    data = event.get('data') or {}
    details = " ".join(f"{key}={value}" for key, value in data.items())
    click.echo(f"[{time_str}] {click.style(event_type, fg=color)}: {details}")


if __name__ == '__main__':
    main()
