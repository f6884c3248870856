"""CLI commands for decisions and decision memory.

Lists and inspects stored decisions, searches completed decisions, and
runs assistant turns from the terminal.
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click

from decision_store.storage import DecisionStore
from models.config import load_config
from workflow.assistant import DecisionAssistant

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = str(Path(__file__).parent.parent / "config.yaml")


def _load_assistant(config_path: str) -> DecisionAssistant:
    return DecisionAssistant.from_config(load_config(config_path))


@click.group()
def decisions():
    """ClarityCheck decision commands."""
    pass


@decisions.command("list")
@click.option(
    "--status",
    type=click.Choice(["active", "completed"]),
    default=None,
    help="Only show decisions with this status",
)
@click.option("--limit", "-l", default=20, type=int, help="Maximum decisions to show")
@click.option("--db", default="claritycheck.db", help="Path to decision database")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
def list_decisions(status: Optional[str], limit: int, db: str, as_json: bool) -> None:
    """List decisions, newest first.

    Example:
        claritycheck decisions list --status completed
    """
    try:
        with DecisionStore(db) as store:
            rows = store.list_decisions(status=status, limit=limit)

        if as_json:
            click.echo(
                json.dumps([row.model_dump(mode="json") for row in rows], indent=2)
            )
            return

        if not rows:
            click.echo("No decisions found.")
            return

        for row in rows:
            created = row.created_at.strftime("%Y-%m-%d %H:%M")
            click.echo(f"{row.id}  [{row.status:<9}]  {created}  {row.title}")

    except Exception as e:
        logger.error(f"Error in list: {e}", exc_info=True)
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@decisions.command()
@click.argument("decision_id")
@click.option("--db", default="claritycheck.db", help="Path to decision database")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
def show(decision_id: str, db: str, as_json: bool) -> None:
    """Show a decision with its stage, record and sources."""
    try:
        with DecisionStore(db) as store:
            decision = store.get_decision(decision_id)
            if decision is None:
                click.echo(f"Error: decision {decision_id} not found", err=True)
                sys.exit(1)
            state = store.get_runtime_state(decision_id, create=False)
            record = store.get_decision_record(decision_id)
            sources = record.sources if record else store.get_sources(decision_id)

        if as_json:
            click.echo(
                json.dumps(
                    {
                        "decision": decision.model_dump(mode="json"),
                        "runtime": state.model_dump(mode="json"),
                        "record": record.model_dump(mode="json") if record else None,
                        "sources": [s.model_dump(mode="json") for s in sources],
                    },
                    indent=2,
                )
            )
            return

        click.echo(f"{decision.title}")
        click.echo(f"  Status: {decision.status}")
        click.echo(f"  Stage: {state.stage}")
        if record is not None:
            click.echo(f"  Recommended: {record.recommended_option} ({record.confidence})")
            click.echo(f"  Rationale: {record.rationale}")
            if record.outcome_note:
                click.echo(f"  Outcome: {record.outcome_note}")
        elif state.recommendation is not None:
            rec = state.recommendation
            click.echo(f"  Current recommendation: {rec.recommended_option} ({rec.confidence})")
        if sources:
            click.echo("  Sources:")
            for index, source in enumerate(sources, 1):
                click.echo(f"    {index}. {source.title} - {source.url}")

    except Exception as e:
        logger.error(f"Error in show: {e}", exc_info=True)
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@decisions.command()
@click.option("--query", "-q", required=True, help="Keywords to search for")
@click.option("--limit", "-l", default=3, type=int, help="Maximum results to return")
@click.option("--db", default="claritycheck.db", help="Path to decision database")
def search(query: str, limit: int, db: str) -> None:
    """Search completed decisions by keywords.

    Example:
        claritycheck decisions search --query "laptop battery"
    """
    try:
        with DecisionStore(db) as store:
            matches = store.search_memories(query, limit=limit)

        if not matches:
            click.echo("No matching decisions.")
            return

        for i, match in enumerate(matches, 1):
            click.echo(f"\n{i}. {match.title}  ({match.decision_id})")
            click.echo(f"   Terms matched: {match.score}")
            click.echo(f"   {match.snippet}")

    except Exception as e:
        logger.error(f"Error in search: {e}", exc_info=True)
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@decisions.command()
@click.argument("text")
@click.option("--config", "config_path", default=DEFAULT_CONFIG, help="Path to config.yaml")
def send(text: str, config_path: str) -> None:
    """Send one message to the assistant and print the reply."""
    try:
        assistant = _load_assistant(config_path)
        reply = asyncio.run(assistant.handle_message(text))
        click.echo(reply.text)
        if reply.error:
            sys.exit(1)

    except Exception as e:
        logger.error(f"Error in send: {e}", exc_info=True)
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@decisions.command()
@click.option("--note", default=None, help="Outcome note to store with the record")
@click.option("--config", "config_path", default=DEFAULT_CONFIG, help="Path to config.yaml")
def complete(note: Optional[str], config_path: str) -> None:
    """Complete the active decision."""
    try:
        assistant = _load_assistant(config_path)
        result = asyncio.run(assistant.complete_decision(note))
        if result is None:
            click.echo("No active decision to complete.")
            return
        record = result.record
        click.echo(f"Completed: {record.title}")
        click.echo(f"  Recommended: {record.recommended_option} ({record.confidence})")
        click.echo(f"  Summary by: {result.provider_used}")

    except Exception as e:
        logger.error(f"Error in complete: {e}", exc_info=True)
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    decisions()
