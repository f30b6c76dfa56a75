from __future__ import annotations

import html
from datetime import datetime, timezone

from .models import Signal, BUY


def _fmt_ms(ts_ms: int) -> str:
    dt = datetime.fromtimestamp(ts_ms / 1000.0, tz=timezone.utc)
    return dt.strftime("%Y-%m-%d %H:%M")


def _escape_markdown_v2(text: str) -> str:
    specials = r"\_*[]()~`>#+-=|{}.!"
    escaped = []
    for ch in str(text):
        if ch in specials:
            escaped.append("\\" + ch)
        else:
            escaped.append(ch)
    return "".join(escaped)


def _escape_text(text: str, parse_mode: str) -> str:
    if parse_mode == "MARKDOWNV2":
        return _escape_markdown_v2(text)
    return html.escape(str(text), quote=False)


def _bold(text: str, parse_mode: str) -> str:
    escaped = _escape_text(text, parse_mode)
    if parse_mode == "MARKDOWNV2":
        return f"*{escaped}*"
    return f"<b>{escaped}</b>"


def format_signal(signal: Signal, cfg) -> str:
    """Telegram alert text for an emitted signal."""
    parse_mode = (getattr(cfg, "parse_mode", "HTML") or "HTML").upper()
    arrow = "🟢" if signal.direction == BUY else "🔴"
    pipe = "\\|" if parse_mode == "MARKDOWNV2" else "|"

    lines = [
        f"{arrow} {_bold(f'{signal.direction} {signal.symbol}', parse_mode)}  {pipe}  {_bold(signal.timeframe, parse_mode)}",
        _escape_text(f"Strategy: {', '.join(signal.strategies)} ({signal.probability}%)", parse_mode),
        "",
        _escape_text(f"Entry: {signal.entry_price}", parse_mode),
        _escape_text(f"Stop Loss: {signal.stop_loss}", parse_mode),
        _escape_text(f"Take Profit: {signal.take_profit}", parse_mode),
        "",
        _escape_text(f"Session: {signal.session} | {_fmt_ms(signal.created_at_ms)} UTC", parse_mode),
    ]

    if getattr(cfg, "include_confluences", True) and signal.confluences:
        lines.append(_escape_text("Confluences: " + ", ".join(signal.confluences), parse_mode))
    if getattr(cfg, "include_description", True) and signal.description:
        lines.append(_escape_text(signal.description, parse_mode))

    footer = (getattr(cfg, "footer", "") or "").strip()
    if footer:
        lines.append("")
        lines.append(_escape_text(footer, parse_mode))

    return "\n".join(lines)
