"""Storyloom CLI - typer application entry point."""

from __future__ import annotations

import asyncio
import atexit
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer
from dotenv import load_dotenv
from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.patch_stdout import patch_stdout
from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from storyloom.branching import (
    BranchController,
    StoryState,
    StoryValidationError,
    TreeNode,
)
from storyloom.config import (
    CONFIG_FILENAME,
    StudioConfig,
    StudioConfigError,
    load_studio_config,
    write_default_config,
)
from storyloom.gateway import build_gateway
from storyloom.models import Character, NarrativeControls
from storyloom.observability import (
    close_file_logging,
    configure_logging,
    get_logger,
    read_story_events,
)
from storyloom.providers import ImageProviderError, ProviderError
from storyloom.storage import StoryGallery, StoryNotFoundError, remix_controls
from storyloom.storage.gallery import dump_story

if TYPE_CHECKING:
    from storyloom.models import ChapterOption, GalleryStory, StoryPath


def _is_interactive_tty() -> bool:
    """Check if stdin/stdout are connected to a TTY."""
    return sys.stdin.isatty() and sys.stdout.isatty()


# Load environment variables from .env file
load_dotenv()

app = typer.Typer(
    name="loom",
    help="Storyloom: branch-and-rewind illustrated story generator.",
    no_args_is_help=True,
)
console = Console()
log = get_logger(__name__)

DEFAULT_STUDIO_DIR = Path()

PLAY_HELP = """\
[bold]Commands[/bold]
  [cyan]1[/cyan], [cyan]2[/cyan], ...        pick an option
  [cyan]tree[/cyan]               show every generated chapter
  [cyan]read[/cyan]               read the story so far
  [cyan]switch[/cyan] PATH        go back and take another branch (e.g. switch 1.2)
  [cyan]edit[/cyan] PATH          rewrite a chapter and redraw its picture
  [cyan]feedback[/cyan] PATH      get writing tips on a draft rewrite
  [cyan]save[/cyan] [--public]    put the finished story in the gallery
  [cyan]quit[/cyan]               leave without saving
"""

# Global state for logging flags (set by callback, used by commands)
_verbose: int = 0
_log_enabled: bool = False
_studio_path: Path = DEFAULT_STUDIO_DIR


@app.callback()
def main(
    verbose: Annotated[
        int,
        typer.Option(
            "-v",
            "--verbose",
            count=True,
            help="Increase verbosity: -v for INFO, -vv for DEBUG.",
        ),
    ] = 0,
    log_events: Annotated[
        bool,
        typer.Option(
            "--log",
            help="Write a JSONL event log to {studio}/logs/events.jsonl.",
        ),
    ] = False,
    studio: Annotated[
        Path,
        typer.Option(
            "--studio",
            "-s",
            help="Studio directory holding studio.yaml, the gallery and illustrations.",
            envvar="STORYLOOM_STUDIO",
        ),
    ] = DEFAULT_STUDIO_DIR,
) -> None:
    """Storyloom: branch-and-rewind illustrated story generator."""
    global _verbose, _log_enabled, _studio_path
    _verbose = verbose
    _log_enabled = log_events
    _studio_path = studio

    configure_logging(verbosity=verbose)


def _configure_studio_logging() -> None:
    if _log_enabled:
        configure_logging(verbosity=_verbose, log_to_file=True, studio_path=_studio_path)
        atexit.register(close_file_logging)


def _load_config() -> StudioConfig:
    try:
        return load_studio_config(_studio_path).with_environment()
    except StudioConfigError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e


def _open_gallery(config: StudioConfig) -> StoryGallery:
    return StoryGallery(_studio_path / config.gallery_file)


def _parse_character(spec: str, index: int, *, symbolic: bool = False) -> Character:
    """Parse ``NAME:DESCRIPTION`` (symbols may add ``:THEME``)."""
    parts = [p.strip() for p in spec.split(":")]
    if len(parts) < 2 or not parts[0]:
        raise typer.BadParameter(f"Expected NAME:DESCRIPTION, got '{spec}'")
    name = parts[0]
    if symbolic:
        theme = parts[2] if len(parts) > 2 and parts[2] else None
        return Character(
            id=f"char-{index}",
            name=name,
            description=parts[1],
            representation="symbolic",
            symbolic_theme=theme,
        )
    return Character(id=f"char-{index}", name=name, description=":".join(parts[1:]))


def parse_path(text: str) -> StoryPath:
    """Parse a dotted, 1-based node path (``2.1.3``) into a 0-based path."""
    try:
        steps = [int(step) for step in text.strip().split(".")]
    except ValueError as e:
        raise StoryValidationError(f"'{text}' is not a path like 1.2.3") from e
    if any(step < 1 for step in steps):
        raise StoryValidationError(f"'{text}' is not a path like 1.2.3")
    return tuple(step - 1 for step in steps)


def format_path(path: StoryPath) -> str:
    return ".".join(str(index + 1) for index in path)


def render_tree(root: TreeNode) -> Tree:
    """Rich tree for a materialized story tree."""
    tree = Tree("[bold]Story[/bold]")

    def add(parent: Tree, node: TreeNode) -> None:
        option = node.content
        title = escape(option.title) if option else ""
        number = format_path(node.path)
        if node.is_on_selection_path:
            label = f"[bold green]{number}[/bold green] [bold]{title}[/bold]"
        else:
            label = f"[dim]{number}[/dim] {title}"
        branch = parent.add(label)
        if node.feedback:
            branch.add(f"[italic dim]Coach: {escape(node.feedback)}[/italic dim]")
        for child in node.children:
            add(branch, child)

    for child in root.children:
        add(tree, child)
    return tree


def _chapter_panel(number: int, option: ChapterOption) -> Panel:
    subtitle = f"[dim]{option.illustration_ref}[/dim]" if option.illustration_ref else None
    return Panel(
        Markdown(option.body),
        title=f"Chapter {number}: {escape(option.title)}",
        title_align="left",
        subtitle=subtitle,
        subtitle_align="right",
        border_style="green",
    )


def _options_table(round_number: int, total: int, options: list[ChapterOption]) -> Table:
    table = Table(title=f"Round {round_number} of {total}: what happens next?", show_lines=True)
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Chapter", style="bold")
    table.add_column("Story")
    for index, option in enumerate(options, 1):
        table.add_row(str(index), escape(option.title), escape(option.body))
    return table


class PlaySession:
    """Interactive loop around a ``BranchController``.

    Input comes from prompt_toolkit on a terminal and from plain stdin
    otherwise (pipes and tests).
    """

    def __init__(self, controller: BranchController, gallery: StoryGallery) -> None:
        self.controller = controller
        self.gallery = gallery
        self.saved: GalleryStory | None = None
        self._session: PromptSession[str] | None = (
            PromptSession() if _is_interactive_tty() else None
        )

    async def ask(self, message: str) -> str | None:
        """Read one line; None on EOF or Ctrl+C."""
        try:
            if self._session is not None:  # pragma: no cover - UI behavior
                with patch_stdout():
                    text = await self._session.prompt_async(
                        HTML(f"<b><ansicyan>{message}</ansicyan></b> ")
                    )
            else:
                text = console.input(f"[bold cyan]{message}[/bold cyan] ")
        except (EOFError, KeyboardInterrupt):
            return None
        return text.strip()

    def show_status(self) -> None:
        status = self.controller.status
        for notice in status.notices:
            console.print(f"[yellow]![/yellow] {escape(notice)}")
        status.dismiss_notices()
        if status.error:
            console.print(f"[red]Error:[/red] {escape(status.error)}")
            status.dismiss_error()

    def show_round(self) -> None:
        controller = self.controller
        options = controller.current_options
        if controller.state is StoryState.OPTIONS_READY and options is not None:
            total = controller.controls.num_rounds if controller.controls else 0
            console.print()
            console.print(_options_table(controller.current_round, total, options))
        elif controller.state is StoryState.STORY_COMPLETE:
            console.print()
            console.print(
                "[bold green]The end.[/bold green] Type [cyan]save[/cyan] to keep it, "
                "[cyan]switch PATH[/cyan] to try another branch."
            )

    def show_story(self) -> None:
        chapters = self.controller.story_so_far
        if not chapters:
            console.print("[dim]Nothing chosen yet.[/dim]")
            return
        for number, option in enumerate(chapters, 1):
            console.print(_chapter_panel(number, option))

    async def _read_draft(self, path: StoryPath) -> tuple[str, str] | None:
        option = self.controller.timeline.option_at(path)
        console.print(_chapter_panel(len(path), option))
        title = await self.ask("New title (blank keeps it):")
        if title is None:
            return None
        body = await self.ask("New text (blank keeps it):")
        if body is None:
            return None
        return title or option.title, body or option.body

    async def handle(self, line: str) -> bool:
        """Run one command. Returns False when the session should end."""
        controller = self.controller
        command, _, argument = line.partition(" ")
        command = command.lower()
        argument = argument.strip()

        if command in {"quit", "exit", "q"}:
            return False
        if command in {"help", "?"}:
            console.print(PLAY_HELP)
        elif command.isdigit():
            with console.status("Weaving the next chapter..."):
                await controller.select_option(int(command) - 1)
        elif command == "tree":
            console.print(render_tree(controller.tree()))
        elif command == "read":
            self.show_story()
        elif command == "switch":
            path = parse_path(argument)
            with console.status(f"Rewinding to {format_path(path)}..."):
                await controller.switch_branch(path)
        elif command == "edit":
            path = parse_path(argument)
            draft = await self._read_draft(path)
            if draft is not None:
                with console.status("Redrawing the illustration..."):
                    await controller.edit_node(path, *draft)
                console.print(f"[green]✓[/green] Chapter {format_path(path)} updated")
        elif command == "feedback":
            path = parse_path(argument)
            draft = await self._read_draft(path)
            if draft is not None:
                with console.status("Asking the writing coach..."):
                    feedback = await controller.request_feedback(path, *draft)
                if feedback:
                    console.print(
                        Panel(Markdown(feedback), title="Writing coach", border_style="magenta")
                    )
        elif command == "save":
            self.saved = controller.finish(self.gallery, is_public=argument == "--public")
            console.print(f"  Story id: [bold]{self.saved.id}[/bold]")
            return False
        else:
            console.print(
                f"[yellow]Unknown command '{escape(command)}'.[/yellow] Type [cyan]help[/cyan]."
            )
        return True

    async def run(self) -> None:
        console.print(PLAY_HELP)
        while True:
            self.show_status()
            self.show_round()
            line = await self.ask(">")
            if line is None:
                break
            if not line:
                continue
            try:
                keep_going = await self.handle(line)
            except StoryValidationError as e:
                console.print(f"[red]Error:[/red] {escape(str(e))}")
                continue
            if not keep_going:
                break
        self.show_status()


async def _play_async(session: PlaySession, controls: NarrativeControls) -> bool:
    """Start the story and hand over to the interactive loop.

    Returns:
        False if the first round could not be generated.
    """
    with console.status("Meeting the cast and writing round 1..."):
        await session.controller.start(controls)
    if session.controller.state is StoryState.IDLE:
        session.show_status()
        return False
    await session.run()
    return True


@app.command()
def version() -> None:
    """Show version information."""
    from storyloom import __version__

    console.print(f"Storyloom v{__version__}")


@app.command()
def init(
    force: Annotated[
        bool,
        typer.Option("--force", help="Overwrite an existing studio.yaml."),
    ] = False,
) -> None:
    """Create a studio.yaml with default settings in the studio directory."""
    if (_studio_path / CONFIG_FILENAME).exists() and not force:
        console.print(
            f"[red]Error:[/red] {CONFIG_FILENAME} already exists in '{_studio_path}'. "
            "Use --force to overwrite."
        )
        raise typer.Exit(1)
    config_path = write_default_config(_studio_path)
    console.print(f"[green]✓[/green] Created {config_path}")
    console.print("  Put API keys in .env (e.g. OPENAI_API_KEY) rather than studio.yaml.")


@app.command()
def play(
    premise: Annotated[
        str | None,
        typer.Argument(help="What the story is about."),
    ] = None,
    rounds: Annotated[
        int,
        typer.Option("--rounds", "-r", min=1, help="Number of chapters to choose."),
    ] = 3,
    tone: Annotated[str, typer.Option("--tone", help="e.g. whimsical, eerie.")] = "",
    genre: Annotated[str, typer.Option("--genre", help="e.g. fantasy, mystery.")] = "",
    constraints: Annotated[
        str, typer.Option("--constraints", help="Rules the story must follow.")
    ] = "",
    style: Annotated[
        str | None,
        typer.Option("--style", help="Illustration style (default from studio.yaml)."),
    ] = None,
    character: Annotated[
        list[str] | None,
        typer.Option("--character", "-c", help="Cast member as NAME:DESCRIPTION (repeatable)."),
    ] = None,
    symbol: Annotated[
        list[str] | None,
        typer.Option(
            "--symbol",
            help="Cast member drawn as a symbol, NAME:DESCRIPTION[:THEME] (repeatable).",
        ),
    ] = None,
    remix: Annotated[
        str | None,
        typer.Option("--remix", help="Replay the settings of a gallery story by id."),
    ] = None,
    text_provider: Annotated[
        str | None,
        typer.Option("--text-provider", help="Chat model, e.g. openai/gpt-4o-mini."),
    ] = None,
    image_provider: Annotated[
        str | None,
        typer.Option("--image-provider", help="Image backend, e.g. placeholder, openai."),
    ] = None,
) -> None:
    """Play a branching story: pick, rewind, edit, then save it to the gallery."""
    _configure_studio_logging()
    config = _load_config()
    if text_provider:
        config.text_provider = text_provider
    if image_provider:
        config.image_provider = image_provider
    gallery = _open_gallery(config)

    if remix:
        try:
            controls = remix_controls(gallery.get(remix))
        except StoryNotFoundError as e:
            console.print(f"[red]Error:[/red] {escape(str(e))}")
            raise typer.Exit(1) from e
        if premise:
            controls.prompt = premise
    else:
        if not premise:
            console.print("[red]Error:[/red] Give a premise, or use --remix ID.")
            raise typer.Exit(1)
        cast = [_parse_character(spec, i) for i, spec in enumerate(character or [], 1)]
        offset = len(cast)
        cast += [
            _parse_character(spec, offset + i, symbolic=True)
            for i, spec in enumerate(symbol or [], 1)
        ]
        controls = NarrativeControls(
            prompt=premise,
            tone=tone,
            genre=genre,
            constraints=constraints,
            style=style or config.default_style,
            num_rounds=rounds,
            options_per_round=config.options_per_round,
            characters=cast,
        )

    try:
        gateway = build_gateway(config, _studio_path)
    except (ProviderError, ImageProviderError) as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e

    log.info(
        "play_started",
        text_provider=config.text_provider,
        image_provider=config.image_provider,
        remix=remix,
    )
    session = PlaySession(BranchController(gateway), gallery)
    if not asyncio.run(_play_async(session, controls)):
        raise typer.Exit(1)


@app.command()
def gallery(
    show_all: Annotated[
        bool, typer.Option("--all", help="Show public and private stories.")
    ] = False,
    private: Annotated[bool, typer.Option("--private", help="Show only private stories.")] = False,
) -> None:
    """List stories in the gallery (public ones by default)."""
    config = _load_config()
    store = _open_gallery(config)
    if store.seed_examples():
        log.info("gallery_seeded", path=str(store.path))

    visibility = "all" if show_all else "private" if private else "public"
    stories = store.list(visibility)
    if not stories:
        console.print("[dim]No stories yet. Play one with 'loom play'.[/dim]")
        return

    table = Table(title=f"Gallery ({visibility})")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Title", style="bold")
    table.add_column("Author")
    table.add_column("Chapters", justify="right")
    table.add_column("Likes", justify="right")
    table.add_column("Created", style="dim")
    for story in stories:
        table.add_row(
            story.id,
            story.title,
            story.author,
            str(len(story.chapters)),
            str(story.likes),
            story.created_at.strftime("%Y-%m-%d"),
        )
    console.print(table)


@app.command()
def read(
    story_id: Annotated[str, typer.Argument(help="Gallery story id.")],
    as_json: Annotated[bool, typer.Option("--json", help="Print the raw story JSON.")] = False,
) -> None:
    """Read a story from the gallery."""
    store = _open_gallery(_load_config())
    try:
        story = store.get(story_id)
    except StoryNotFoundError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e

    if as_json:
        console.print_json(dump_story(story))
        return

    byline = f"by {escape(story.author)}, ♥ {story.likes}"
    console.print(f"[bold]{escape(story.title)}[/bold] [dim]{byline}[/dim]")
    if story.characters:
        cast = ", ".join(c.name for c in story.characters)
        console.print(f"[dim]Starring {escape(cast)}[/dim]")
    for number, option in enumerate(story.chapters, 1):
        console.print(_chapter_panel(number, option))


@app.command()
def like(story_id: Annotated[str, typer.Argument(help="Gallery story id.")]) -> None:
    """Like a story in the gallery."""
    store = _open_gallery(_load_config())
    try:
        story = store.like(story_id)
    except StoryNotFoundError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e
    console.print(f"[magenta]♥[/magenta] {escape(story.title)} now has {story.likes} likes")


_EVENT_META = ("timestamp", "level", "logger", "story", "event")


@app.command()
def history(story_id: Annotated[str, typer.Argument(help="Gallery story id.")]) -> None:
    """Show how a story was grown, from the studio's event log (see --log)."""
    events = read_story_events(_studio_path, story_id)
    if not events:
        console.print(
            f"[dim]No logged events for {escape(story_id)}. "
            "Play with 'loom --log play' to record them.[/dim]"
        )
        return

    table = Table(title=f"History of {story_id}")
    table.add_column("Time", style="dim", no_wrap=True)
    table.add_column("Event", style="cyan")
    table.add_column("Details")
    for entry in events:
        details = " ".join(f"{k}={v}" for k, v in entry.items() if k not in _EVENT_META)
        at = str(entry.get("timestamp", ""))[11:19]
        table.add_row(at, escape(str(entry["event"])), escape(details))
    console.print(table)
