"""CLI entrypoint for Podium."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

import click

from podium.core.exceptions import PodiumError
from podium.core.models import (
    JudgeMode,
    JudgeWeights,
    METRICS,
    OrchestrationResult,
    ProgressEvent,
    Task,
    TaskCategory,
)
from podium.domains.classifier import categorize_prompt
from podium.domains.profiles import list_domain_profiles

_CATEGORIES = [c.value for c in TaskCategory]
_JUDGE_MODES = [m.value for m in JudgeMode]


def _setup_logging(verbose: bool = False) -> None:
    """Apply logging configuration from config/default.yaml."""
    from podium.core.config import load_config

    try:
        config = load_config()
        level_name = config.logging.level
        fmt = config.logging.format
    except (PodiumError, ValueError):
        level_name = "INFO"
        fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    level = logging.DEBUG if verbose else getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level, format=fmt, stream=sys.stderr)


def _load_component_factory():
    from podium.core.factory import ComponentFactory

    return ComponentFactory


def _parse_weights(raw: Optional[str]) -> Optional[dict[str, float]]:
    if not raw:
        return None
    parts = [p.strip() for p in raw.split(",")]
    if len(parts) != len(METRICS):
        raise click.BadParameter("expected four comma-separated numbers (accuracy,completeness,clarity,insight)")
    try:
        return {metric: float(part) for metric, part in zip(METRICS, parts)}
    except ValueError as exc:
        raise click.BadParameter(f"invalid weight in {raw!r}") from exc


def _parse_tools(raw: Optional[str]) -> Optional[list[str]]:
    if raw is None:
        return None
    return [name for name in (p.strip() for p in raw.split(",")) if name]


def _echo_json(payload: dict[str, Any]) -> None:
    click.echo(json.dumps(payload, indent=2, ensure_ascii=True, default=str))


def _echo_progress(event: ProgressEvent) -> None:
    if event.type == "agent_complete":
        status = click.style("ok", fg="green") if event.data.get("success") else click.style("failed", fg="red")
        click.echo(f"  {event.agent_id} ({event.data.get('persona')}): {status} in {event.data.get('time_ms')}ms", err=True)
    elif event.type == "judging_started":
        click.echo("  Judging...", err=True)


def _echo_outcome(outcome: OrchestrationResult) -> None:
    verdict = outcome.judge_result
    gate = outcome.confidence_gate
    click.echo()
    click.echo(click.style(f"Winner: {outcome.winner.agent_id} ({outcome.winner.persona})", bold=True))
    click.echo(f"  Category:     {outcome.category.value}")
    click.echo(f"  Judge mode:   {verdict.mode.value} ({verdict.prompt_version})")
    click.echo(f"  Summary:      {verdict.summary}")
    for score in sorted(verdict.scores, key=lambda s: -s.total):
        penalty = " (diversity penalty)" if score.diversity_penalty_applied else ""
        click.echo(
            f"  {score.agent_id}: {score.total}/40  acc={score.accuracy} comp={score.completeness} "
            f"clar={score.clarity} ins={score.insight}{penalty}"
        )
    gate_label = click.style("PASS", fg="green", bold=True) if gate.passed else click.style("FAIL", fg="red", bold=True)
    click.echo(f"  Gate:         [{gate_label}] {gate.reason}")
    click.echo(
        f"  Trust:        {verdict.confidence_level.value if verdict.confidence_level else 'n/a'}"
        f" | evidence {verdict.evidence_coverage:.0%} | disagreement {verdict.disagreement_index}"
    )
    click.echo(f"  Baseline:     {outcome.baseline} (lift {outcome.lift:+})")
    click.echo(f"  Learning:     {'applied' if outcome.learning_applied else 'not applied'}")
    winner = next((r for r in outcome.results if r.agent_id == outcome.winner.agent_id), None)
    if winner is not None:
        click.echo()
        click.echo(winner.response)


@click.group()
@click.option("--verbose", is_flag=True, default=False, help="Enable verbose (DEBUG) logging.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Podium: race several agent personas on one prompt and judge the answers."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    _setup_logging(verbose=verbose)


@cli.command("race")
@click.argument("prompt")
@click.option("--agents", "agent_count", type=click.IntRange(1, 3), default=None, help="Number of agents (1-3).")
@click.option("--category", type=click.Choice(_CATEGORIES), default=None, help="Skip classification.")
@click.option("--judge-mode", type=click.Choice(_JUDGE_MODES), default=None, help="single or consensus.")
@click.option("--weights", default=None, help="accuracy,completeness,clarity,insight weights.")
@click.option("--tools", default=None, help="Comma-separated tool names.")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the full result as JSON.")
@click.option(
    "--config-dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Optional config directory for ComponentFactory.",
)
@click.option("--env", default=None, help="Config overlay name (config/{env}.yaml).")
def race(
    prompt: str,
    agent_count: Optional[int],
    category: Optional[str],
    judge_mode: Optional[str],
    weights: Optional[str],
    tools: Optional[str],
    as_json: bool,
    config_dir: Optional[Path],
    env: Optional[str],
) -> None:
    """Run one race on PROMPT and print the verdict."""
    parsed_weights = _parse_weights(weights)
    factory = _load_component_factory()
    try:
        bundle = factory.create(config_dir=config_dir, env=env)
    except PodiumError as exc:
        raise click.ClickException(str(exc)) from exc

    task = Task(prompt=prompt, category=TaskCategory(category) if category else None)
    unsubscribe = None if as_json else bundle.bus.subscribe(task.id, _echo_progress)
    try:
        outcome = bundle.orchestrator.run(
            task,
            agent_count=agent_count,
            tools=_parse_tools(tools),
            judge_mode=judge_mode,
            weights=parsed_weights,
        )
    except PodiumError as exc:
        raise click.ClickException(str(exc)) from exc
    finally:
        if unsubscribe is not None:
            unsubscribe()
        factory.close(bundle)

    if as_json:
        _echo_json(outcome.model_dump(mode="json"))
    else:
        _echo_outcome(outcome)


@cli.command("profiles")
def profiles() -> None:
    """List the domain profiles."""
    for profile in list_domain_profiles():
        weights: JudgeWeights = profile.default_weights
        click.echo(click.style(f"{profile.id.value}", bold=True) + f"  {profile.label}")
        click.echo(f"  {profile.description}")
        click.echo(f"  tools: {', '.join(profile.default_tools) or '-'}")
        click.echo(
            f"  judge: {profile.default_judge_mode.value}  objective: {profile.objective_mode.value}  "
            f"weights: {weights.accuracy}/{weights.completeness}/{weights.clarity}/{weights.insight}"
        )


@cli.command("classify")
@click.argument("prompt")
def classify(prompt: str) -> None:
    """Print the detected category for PROMPT."""
    click.echo(categorize_prompt(prompt).value)


@cli.command("learnings")
@click.option("--category", type=click.Choice(_CATEGORIES), default=None)
@click.option(
    "--config-dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
)
@click.option("--json", "as_json", is_flag=True, default=False)
def learnings(category: Optional[str], config_dir: Optional[Path], as_json: bool) -> None:
    """List learning records from the configured store."""
    factory = _load_component_factory()
    try:
        bundle = factory.create(config_dir=config_dir, initialize_schema=False)
    except PodiumError as exc:
        raise click.ClickException(str(exc)) from exc
    try:
        records = bundle.store.list_learnings(TaskCategory(category) if category else None)
    except PodiumError as exc:
        raise click.ClickException(str(exc)) from exc
    finally:
        factory.close(bundle)

    if as_json:
        _echo_json({"learnings": [r.model_dump(mode="json") for r in records]})
        return
    if not records:
        click.echo("No learning records.")
        return
    for record in records:
        click.echo(
            f"{record.target_agent} <- {record.source_agent} [{record.category.value}] "
            f"rate={record.success_rate:.2f} lift={record.avg_lift:+.2f} applied={record.applied_count}"
        )
        click.echo(f"  {record.pattern}")


@cli.command("init-db")
@click.option(
    "--config-dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
)
def init_db(config_dir: Optional[Path]) -> None:
    """Initialize the PostgreSQL schema."""
    from podium.core.config import load_config
    from podium.db.engine import DatabaseEngine

    try:
        config = load_config(config_dir=config_dir)
        engine = DatabaseEngine(config.database)
        engine.initialize_schema()
    except PodiumError as exc:
        raise click.ClickException(str(exc)) from exc
    engine.close()
    click.echo(f"Schema initialized on {config.database.host}:{config.database.port}/{config.database.dbname}")


def main() -> None:
    """Entry point used by `podium` console script."""
    from dotenv import load_dotenv
    load_dotenv(Path(__file__).parent.parent / ".env", override=True)
    cli()


if __name__ == "__main__":
    main()
