# /docmind/app.py
"""
Main application file for the docmind Document Q&A CLI.
Handles the Command-Line Interface (CLI) and user interactions; all document
work is delegated to KnowledgeBaseService.
"""
import os
import sys
from pathlib import Path

# Rich UI Components
from rich import box
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

# Local module imports
from .config import API_MODEL_NAME, LOCAL_MODEL_NAME, RETRIEVAL_TOP_K, USE_API_LLM, VECTOR_DISTANCE, console
from .embeddings import unload_embeddings
from .errors import GenerationFormatError, KnowledgeBaseError
from .models import QAPair, validate_document_id
from .observability import get_logger
from .service import KnowledgeBaseService

logger = get_logger(__name__)


# --- UI & Formatting Functions ---

def display_welcome_banner():
    """Displays the application's welcome banner."""
    model = API_MODEL_NAME if USE_API_LLM else LOCAL_MODEL_NAME
    console.print(Panel(
        "[bold magenta]docmind - Document Knowledge Base CLI[/bold magenta]",
        subtitle=f"[cyan]{model} | top-{RETRIEVAL_TOP_K} {VECTOR_DISTANCE} retrieval[/cyan]",
        expand=False
    ))


def print_error(exc: KnowledgeBaseError):
    console.print(f"[bold red]{exc.kind}: {exc.message}[/bold red]")
    if isinstance(exc, GenerationFormatError) and exc.raw_output:
        console.print(Panel(exc.raw_output[:1000], title="Raw model output", border_style="red"))


def render_pairs(title: str, pairs: list[QAPair], front: str = "Question", back: str = "Answer"):
    if not pairs:
        console.print(f"[yellow]No {title.lower()} generated.[/yellow]")
        return
    table = Table(title=title, border_style="blue", header_style="bold", box=box.SQUARE, show_lines=True)
    table.add_column("#", style="dim")
    table.add_column(front, style="cyan")
    table.add_column(back, style="white")
    for idx, pair in enumerate(pairs, start=1):
        table.add_row(str(idx), pair.question, pair.answer)
    console.print(table)


def _resolve_upload_path(raw_input: str) -> tuple[Path | None, str | None]:
    """Normalizes and validates user-provided upload path."""
    cleaned = str(raw_input or "").strip().strip('"').strip("'")
    if not cleaned:
        return None, "Error: Empty path provided."
    try:
        resolved = Path(cleaned).expanduser().resolve(strict=True)
    except FileNotFoundError:
        return None, f"Error: File not found at '{cleaned}'"
    except OSError as exc:
        return None, f"Error: Invalid path '{cleaned}' ({exc})"

    if os.name == "nt":
        is_reserved_fn = getattr(os.path, "isreserved", None)
        if callable(is_reserved_fn) and is_reserved_fn(str(resolved)):
            return None, f"Error: Reserved path is not allowed: '{resolved}'"
    if not resolved.is_file():
        return None, f"Error: Path is not a regular file: '{resolved}'"
    return resolved, None


# --- Menu Actions ---

def handle_document_upload(service: KnowledgeBaseService):
    """CLI flow for uploading a new document."""
    file_path_str = Prompt.ask("Enter the full path to your PDF")
    file_path, error_message = _resolve_upload_path(file_path_str)
    if file_path is None:
        console.print(f"[bold red]{error_message}[/bold red]")
        return
    document_id = Prompt.ask("Enter a document id", default=file_path.stem.replace(" ", "_"))
    try:
        document_id = validate_document_id(document_id)
        with console.status("[bold cyan]Chunking, embedding and storing...[/bold cyan]", spinner="dots"):
            chunk_count = service.upload_file(document_id, file_path)
    except KnowledgeBaseError as exc:
        print_error(exc)
        return
    console.print(Panel(
        f"[green]'{file_path.name}' stored as [bold]{document_id}[/bold] ({chunk_count} chunks) and loaded.[/green]",
        title="Upload Success",
        border_style="green",
    ))


def list_documents(service: KnowledgeBaseService):
    """Displays a table of all stored documents."""
    document_ids = service.list_documents()
    if not document_ids:
        console.print("[yellow]No documents uploaded yet.[/yellow]")
        return
    active = service.active_document_id()
    table = Table(title="Stored Documents", border_style="blue", header_style="bold", box=box.SQUARE)
    table.add_column("ID", style="cyan")
    table.add_column("Status", style="white")
    for document_id in document_ids:
        status = "[green]Active[/green]" if document_id == active else "[dim]Stored[/dim]"
        table.add_row(document_id, status)
    console.print(table)


def handle_load_document(service: KnowledgeBaseService):
    document_ids = service.list_documents()
    if not document_ids:
        console.print("[yellow]No documents uploaded yet.[/yellow]")
        return
    document_id = Prompt.ask("Document id to load", choices=document_ids, default=document_ids[0])
    try:
        with console.status(f"[bold cyan]Loading {document_id}...[/bold cyan]", spinner="dots"):
            service.load_context(document_id)
    except KnowledgeBaseError as exc:
        print_error(exc)
        return
    console.print(f"[green]Document context for ID {document_id} loaded.[/green]")


def handle_qa_session(service: KnowledgeBaseService):
    """Question loop against the active document."""
    active = service.active_document_id()
    if active is None:
        console.print("[bold red]No document loaded. Upload or load a document first.[/bold red]")
        return
    console.print(f"\n[bold green]Q&A Session Started on {active}.[/bold green] [italic]Type 'back' to return to menu.[/italic]")
    while True:
        query = Prompt.ask("[bold cyan]Ask a question (or type 'back' to go back to the menu)[/bold cyan]")
        if query.lower() == "back":
            break
        if not query.strip():
            continue
        try:
            with console.status("[bold cyan]Thinking...[/bold cyan]", spinner="dots"):
                answer = service.ask(query)
        except KnowledgeBaseError as exc:
            print_error(exc)
            continue
        console.print(Panel(Markdown(answer or "_(empty answer)_"), title="Answer", border_style="blue"))


def handle_study_tools(service: KnowledgeBaseService):
    console.print("\n[bold]Study Tools:[/bold]")
    console.print("1. Summary")
    console.print("2. Key Concepts")
    console.print("3. Q&A Pairs")
    console.print("4. Flashcards")
    choice = Prompt.ask("Choose a tool", choices=["1", "2", "3", "4"], default="1")
    try:
        with console.status("[bold cyan]Generating...[/bold cyan]", spinner="dots"):
            if choice == "1":
                result = service.summary()
            elif choice == "2":
                result = service.key_concepts()
            elif choice == "3":
                result = service.generate_qa()
            else:
                result = service.flashcards()
    except KnowledgeBaseError as exc:
        print_error(exc)
        return

    if choice == "1":
        console.print(Panel(Markdown(result or "_(empty document)_"), title="Summary", border_style="blue"))
    elif choice == "2":
        body = "\n".join(f"- {concept}" for concept in result) or "_(no concepts)_"
        console.print(Panel(Markdown(body), title="Key Concepts", border_style="blue"))
    elif choice == "3":
        render_pairs("Q&A Pairs", result)
    else:
        render_pairs("Flashcards", result, front="Front", back="Back")


def main():
    """Main application loop."""
    display_welcome_banner()
    try:
        service = KnowledgeBaseService.from_config()
    except KnowledgeBaseError as exc:
        print_error(exc)
        sys.exit(1)
    logger.info("cli_started", documents=len(service.list_documents()))

    try:
        while True:
            try:
                active = service.active_document_id() or "none"
                console.print(f"\n[bold]Main Menu:[/bold] [dim](active: {active})[/dim]")
                console.print("[green]1. Upload Document[/green]")
                console.print("[cyan]2. List Stored Documents[/cyan]")
                console.print("[cyan]3. Load Document[/cyan]")
                console.print("[blue]4. Start Q&A Session[/blue]")
                console.print("[blue]5. Study Tools[/blue]")
                console.print("[red]6. Exit[/red]")

                choice = Prompt.ask("Choose an option", choices=["1", "2", "3", "4", "5", "6"])

                if choice == "1":
                    handle_document_upload(service)
                elif choice == "2":
                    list_documents(service)
                elif choice == "3":
                    handle_load_document(service)
                elif choice == "4":
                    handle_qa_session(service)
                elif choice == "5":
                    handle_study_tools(service)
                elif choice == "6":
                    break
            except KeyboardInterrupt:
                break
    finally:
        service.close()
        unload_embeddings()

    console.print("\n[bold magenta]Goodbye! Hope you had a productive session.[/bold magenta]")
    sys.exit(0)

if __name__ == "__main__":
    main()
