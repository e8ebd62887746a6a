from rich.text import Text

__version__ = "0.1.0"

APP_DESCRIPTION = "Resolve, install and apply iOS code signing for Flutter CI builds"


def get_banner_text() -> Text:
    banner = Text()
    banner.append("  __ _       _       _             \n", style="bold cyan")
    banner.append(" / _| |_   _| |_ ___(_) __ _ _ __  \n", style="bold cyan")
    banner.append("| |_| | | | | __/ __| |/ _` | '_ \\ \n", style="bold cyan")
    banner.append("|  _| | |_| | |_\\__ \\ | (_| | | | |\n", style="bold cyan")
    banner.append("|_| |_|\\__,_|\\__|___/_|\\__, |_| |_|\n", style="bold cyan")
    banner.append("                       |___/       ", style="bold cyan")
    return banner
