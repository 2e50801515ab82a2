# ABOUTME: Provides a CLI that prints the next review queue for an exported solve history.
# ABOUTME: Shows per-item recall estimates so strategy choices can be inspected by hand.

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

import typer
from rich.console import Console
from rich.table import Table

from src.common.config import load_engine_config
from src.common.history_io import load_item_records
from src.hlr.model import load_model, next_review_delta
from src.hlr.recall import estimate_item
from src.hlr.store import WeightStore
from src.review.difficulty import DifficultyTracker
from src.review.scheduler import Strategy, item_signals, rank
from src.review.views import ViewStore

console = Console()
app = typer.Typer(help="Rank review items with the HLR engine and rule-based strategies.")


def _load_difficulties(path: Optional[Path]) -> Dict[str, float]:
    if path is None:
        return {}
    if not path.exists():
        console.print(f"[red]Missing difficulty cache at {path}[/red]")
        raise typer.Exit(code=1)
    return DifficultyTracker.from_dict(json.loads(path.read_text(encoding="utf-8"))).as_dict()


def _load_views(path: Optional[Path]) -> Optional[ViewStore]:
    if path is None:
        return None
    return ViewStore.load(path)


@app.command("rank")
def rank_queue(
    history: Path = typer.Option(..., "--history", exists=True, help="Exported solve history (JSON, CSV, or parquet)."),
    strategy: Optional[str] = typer.Option(None, "--strategy", help="smart, hlr, flag, lowScore, recentWrong, oldWrong."),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to hlr config YAML."),
    difficulties: Optional[Path] = typer.Option(None, "--difficulties", help="JSON map of item id to 1-10 difficulty."),
    views: Optional[Path] = typer.Option(None, "--views", help="JSON passive view store."),
    limit: int = typer.Option(20, "--limit", help="Number of items to show."),
) -> None:
    """Print the ranked review queue."""

    engine_cfg = load_engine_config(config)
    items = load_item_records(history)
    model = load_model(WeightStore(engine_cfg.store_dir))
    selected = Strategy.parse(strategy or engine_cfg.scheduler.default_strategy)
    now = datetime.now(timezone.utc)
    difficulty_map = _load_difficulties(difficulties)
    view_store = _load_views(views)

    queue = rank(
        items,
        selected,
        model=model,
        now=now,
        difficulties=difficulty_map,
        views=view_store,
        config=engine_cfg,
    )

    console.rule(f"[bold blue]Review queue ({selected.value})[/bold blue]")
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("#")
    table.add_column("Item ID")
    table.add_column("Flag")
    table.add_column("Latest score")
    table.add_column("Recall")
    for position, item in enumerate(queue[:limit], start=1):
        estimate = estimate_item(
            item,
            model,
            now=now,
            config=engine_cfg.recall,
            window=engine_cfg.dedup.window,
            signals=item_signals(item.item_id, now, difficulty_map.get(item.item_id), view_store),
        )
        if estimate is None:
            recall = "-"
        elif estimate.is_short_term:
            recall = "short-term"
        else:
            recall = f"{estimate.recall_probability:.2f}"
        score = "-" if item.latest_score is None else f"{item.latest_score:.0f}"
        table.add_row(str(position), item.item_id, "*" if item.review_flag else "", score, recall)
    console.print(table)
    console.print(f"[bold]{len(queue):,} of {len(items):,} items queued[/bold]")


@app.command()
def recall(
    history: Path = typer.Option(..., "--history", exists=True, help="Exported solve history."),
    item_id: str = typer.Option(..., "--item-id", help="Item identifier to inspect."),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to hlr config YAML."),
    views: Optional[Path] = typer.Option(None, "--views", help="JSON passive view store."),
) -> None:
    """Show the forgetting-curve state of a single item."""

    engine_cfg = load_engine_config(config)
    items = {item.item_id: item for item in load_item_records(history)}
    if item_id not in items:
        console.print(f"[red]No history for item {item_id}[/red]")
        raise typer.Exit(code=1)

    model = load_model(WeightStore(engine_cfg.store_dir))
    now = datetime.now(timezone.utc)
    estimate = estimate_item(
        items[item_id],
        model,
        now=now,
        config=engine_cfg.recall,
        window=engine_cfg.dedup.window,
        signals=item_signals(item_id, now, None, _load_views(views)),
    )
    if estimate is None:
        console.print(f"[yellow]Item {item_id} has never been solved[/yellow]")
        return

    console.print(f"[bold]Half-life:[/] {estimate.half_life_days:.2f} days")
    console.print(f"[bold]Elapsed:[/] {estimate.elapsed_days:.2f} days")
    console.print(f"[bold]Last score:[/] {estimate.last_score:.0f}")
    if estimate.is_short_term:
        console.print("[bold]Recall:[/] still in short-term memory")
    else:
        console.print(f"[bold]Recall:[/] {estimate.recall_probability:.2%}")
    delta = next_review_delta(estimate.half_life_days, engine_cfg.recall.target_recall)
    console.print(f"[bold]Next review:[/] {delta:.1f} days after the last solve")


if __name__ == "__main__":
    app()
