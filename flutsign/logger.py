from rich.console import Console
from rich.markup import escape
from functools import lru_cache


@lru_cache(maxsize=1)
def get_console() -> Console:
    """Get or create the shared Console instance"""
    return Console()


# Leveled helpers. Messages are escaped so build settings such as
# CODE_SIGN_IDENTITY[sdk=iphoneos*] are not read as markup.
def log_info(message: str) -> None:
    get_console().log(f"[blue]ℹ️  {escape(message)}[/]")


def log_success(message: str) -> None:
    get_console().log(f"[green]✅ {escape(message)}[/]")


def log_warning(message: str) -> None:
    get_console().log(f"[yellow]⚠️  {escape(message)}[/]")


def log_error(message: str) -> None:
    get_console().log(f"[bold red]❌ {escape(message)}[/]")
