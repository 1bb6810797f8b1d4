import asyncio
import json
import sys
from typing import Any, Optional

import click

from k8s_recommender.config.config import Config
from k8s_recommender.core.service import RecommenderService
from k8s_recommender.utils.exceptions import ClusterUnreachable, K8sRecommenderError, RecoverableError
from k8s_recommender.utils.logger import AgentLogger

# Create logger for the command line
cli_logger = AgentLogger("K8S_RECOMMENDER_CLI")


def _emit(payload: Any) -> None:
    if hasattr(payload, "model_dump"):
        payload = payload.model_dump(mode="json")
    click.echo(json.dumps(payload, indent=2, default=str))


def _parse_value(raw: str) -> Any:
    """Answers are JSON when they parse as JSON, plain text otherwise."""
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def _run(ctx: click.Context, coroutine_factory, render=_emit) -> None:
    service: RecommenderService = ctx.obj["service"]
    try:
        render(asyncio.run(coroutine_factory(service)))
    except RecoverableError as e:
        click.echo(json.dumps(e.to_dict(), indent=2, default=str), err=True)
        sys.exit(1)
    except ClusterUnreachable as e:
        cli_logger.log_structured(
            level="ERROR",
            message="Cluster unreachable",
            extra={"endpoint": e.endpoint, "error": e.message},
        )
        click.echo(json.dumps({"error": "ClusterUnreachable", "message": e.message}), err=True)
        sys.exit(2)
    except K8sRecommenderError as e:
        click.echo(json.dumps({"error": type(e).__name__, "message": str(e)}), err=True)
        sys.exit(1)


@click.group()
@click.option('--config-file', 'config_file', help='Path to a JSON configuration file')
@click.option('--store', 'store', type=click.Choice(['file', 'memory']), default='file', show_default=True,
              help='Where sessions and capability indexes are kept')
@click.pass_context
def main(ctx: click.Context, config_file: Optional[str], store: str) -> None:
    """Recommend Kubernetes manifests from what a cluster can actually express."""
    overrides = Config.load_config(config_file) if config_file else {}
    overrides.setdefault("SESSION_STORE", store)
    config = Config(overrides)
    cli_logger.log_structured(
        level="DEBUG",
        message="Starting k8s-recommender",
        extra={"config_file": config_file, "store": config.SESSION_STORE},
    )
    ctx.ensure_object(dict)
    ctx.obj["service"] = RecommenderService.from_config(config)


@main.command()
@click.pass_context
def discover(ctx: click.Context) -> None:
    """Build a capability index from the cluster."""
    async def run(service: RecommenderService):
        index = await service.discover()
        return {
            "index_id": index.index_id,
            "built_at": index.built_at,
            "resources": len(index),
            "partial_failures": index.partial_failures,
        }
    _run(ctx, run)


@main.command()
@click.argument('kind')
@click.option('--api-version', 'api_version', help='apiVersion when several groups serve the kind')
@click.option('--depth', 'depth', type=int, default=6, show_default=True)
@click.pass_context
def explain(ctx: click.Context, kind: str, api_version: Optional[str], depth: int) -> None:
    """Describe a resource kind of the current index."""
    _run(ctx, lambda service: service.explain(kind, api_version=api_version, max_depth=depth))


@main.command()
@click.argument('intent')
@click.option('--session', 'session_id', help='Resume an existing session')
@click.pass_context
def recommend(ctx: click.Context, intent: str, session_id: Optional[str]) -> None:
    """Recommend solutions for INTENT."""
    _run(ctx, lambda service: service.recommend(intent, session_id=session_id))


@main.command()
@click.argument('session_id')
@click.argument('solution_id')
@click.pass_context
def choose(ctx: click.Context, session_id: str, solution_id: str) -> None:
    """Switch the session to another ranked solution."""
    _run(ctx, lambda service: service.choose(session_id, solution_id))


@main.command()
@click.argument('session_id')
@click.argument('question_id')
@click.argument('value')
@click.pass_context
def answer(ctx: click.Context, session_id: str, question_id: str, value: str) -> None:
    """Answer one question of a session."""
    _run(ctx, lambda service: service.answer(session_id, question_id, _parse_value(value)))


@main.command()
@click.argument('session_id')
@click.argument('requirements', nargs=-1)
@click.pass_context
def enhance(ctx: click.Context, session_id: str, requirements) -> None:
    """Apply answers and additional REQUIREMENTS to the selected solution."""
    _run(ctx, lambda service: service.enhance(session_id, list(requirements)))


@main.command()
@click.argument('session_id')
@click.option('--yaml', 'as_yaml', is_flag=True, help='Print the manifests as YAML')
@click.pass_context
def finalize(ctx: click.Context, session_id: str, as_yaml: bool) -> None:
    """Render the final manifests of a session."""
    render = (lambda manifests: click.echo(manifests.yaml)) if as_yaml else _emit
    _run(ctx, lambda service: service.finalize(session_id), render=render)


@main.command()
@click.argument('session_id')
@click.pass_context
def show(ctx: click.Context, session_id: str) -> None:
    """Show the current state of a session."""
    _run(ctx, lambda service: service.get_session(session_id))


@main.command()
@click.argument('session_id')
@click.pass_context
def cancel(ctx: click.Context, session_id: str) -> None:
    """Cancel a session."""
    _run(ctx, lambda service: service.cancel(session_id))


if __name__ == '__main__':
    main()
