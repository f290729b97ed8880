"""Logging configuration."""
import logging
import sys


def setup_logging(level: int = logging.INFO) -> None:
    """Configure application logging."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    # Set third-party loggers to WARNING
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def mask_secret(value: str, visible: int = 4) -> str:
    """Return a loggable preview of a secret value."""
    if not value:
        return "[EMPTY]"
    if len(value) < visible * 2:
        return f"[TOO_SHORT] (len:{len(value)})"
    return f"{value[:visible]}...{value[-visible:]} (len:{len(value)})"


def hidden_characters(value: str) -> dict:
    """Report whitespace that commonly sneaks into copy-pasted secrets."""
    return {
        "hasNewline": "\n" in value,
        "hasCarriageReturn": "\r" in value,
        "hasTab": "\t" in value,
        "hasSpace": value.startswith(" ") or value.endswith(" "),
    }
