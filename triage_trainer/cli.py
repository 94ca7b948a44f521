"""Click-based CLI for running active-learning triage training sessions."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import click

from triage_trainer.config import TrainingConfig, load_config
from triage_trainer.errors import EpisodeFailure
from triage_trainer.orchestrator import ActiveLearningOrchestrator
from triage_trainer.selection.complexity import ComplexityProfiler, difficulty_histogram, profile_summary
from triage_trainer.selection.strategies import SelectionStrategyType
from triage_trainer.simulation import (
    LinearAgent,
    RandomAgent,
    RuleBasedAgent,
    SimulatedConsultationChannel,
    SyntheticCaseGenerator,
    TriageEnvironment,
)

logger = logging.getLogger(__name__)

AGENTS = {
    "linear": LinearAgent,
    "random": RandomAgent,
    "rule": RuleBasedAgent,
}


def build_agent(kind: str, seed: Optional[int]):
    if kind == "rule":
        return RuleBasedAgent()
    return AGENTS[kind](seed=seed)


@click.group()
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose logging",
)
def cli(verbose: bool) -> None:
    """Active-learning trainer for synthetic medical triage agents."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.debug("CLI initialized")


@cli.command()
@click.option("--episodes", "-n", type=int, default=20, show_default=True, help="Episodes to run")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    help="JSON configuration file",
)
@click.option(
    "--strategy",
    "-s",
    type=click.Choice([s.value for s in SelectionStrategyType], case_sensitive=False),
    help="Initial case selection strategy",
)
@click.option(
    "--agent",
    "-a",
    type=click.Choice(sorted(AGENTS), case_sensitive=False),
    default="linear",
    show_default=True,
    help="Agent to train",
)
@click.option("--seed", type=int, default=None, help="Seed for cases, agent and expert")
@click.option(
    "--output",
    "-o",
    type=click.Path(path_type=Path),
    help="Write episode results as JSON lines to this file",
)
def train(
    episodes: int,
    config_path: Optional[Path],
    strategy: Optional[str],
    agent: str,
    seed: Optional[int],
    output: Optional[Path],
) -> None:
    """Run a training session and print a JSON summary.

    Examples:

        triage-trainer train -n 50 --agent linear --seed 7

        triage-trainer train -c session.json -s uncertainty_focused -o results.jsonl
    """
    if episodes < 1:
        raise click.BadParameter("episodes must be >= 1")
    try:
        config = load_config(config_path) if config_path else TrainingConfig()
    except (ValueError, json.JSONDecodeError) as e:
        raise click.ClickException(f"Invalid configuration: {e}")

    generator = SyntheticCaseGenerator(seed=seed)
    orchestrator = ActiveLearningOrchestrator(
        agent=build_agent(agent, seed),
        environment=TriageEnvironment(generator, config.orchestrator.cases_per_episode, seed=seed),
        config=config,
        case_generator=generator,
        channel=SimulatedConsultationChannel(seed=seed),
    )
    if strategy:
        orchestrator.selection.set_strategy(strategy)

    try:
        results = asyncio.run(orchestrator.run_training(episodes))
    except EpisodeFailure as e:
        raise click.ClickException(f"Training failed: {e}")

    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text("".join(r.to_json() + "\n" for r in results))
        click.echo(f"Episode results written to {output}")

    summary = {
        "session_id": orchestrator.session_id,
        "episodes": len(results),
        "status": orchestrator.get_status(),
        "analytics": orchestrator.get_learning_analytics(),
    }
    click.echo(json.dumps(summary, indent=2, default=str))


@cli.command()
@click.option("--count", "-n", type=int, default=10, show_default=True, help="Cases to generate")
@click.option("--seed", type=int, default=None, help="Generator seed")
def profile(count: int, seed: Optional[int]) -> None:
    """Generate synthetic cases and print their complexity profiles."""
    generator = SyntheticCaseGenerator(seed=seed)
    profiler = ComplexityProfiler()
    cases = [profiler.ensure_profile(generator.generate_sync()) for _ in range(count)]
    for case in cases:
        click.echo(
            f"{case.id}  {case.patient.acuity.value:<8} {case.patient.chief_complaint:<28} "
            f"complexity={case.overall_complexity:.2f}  {profile_summary(case) or ''}"
        )
    click.echo(json.dumps(difficulty_histogram(cases), indent=2))


if __name__ == "__main__":
    cli()
