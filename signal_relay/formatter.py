from collections.abc import Mapping
from typing import Any

from signal_relay.models import AnalysisResult

BRAND = "SignalRelay"

ACTION_GLYPHS = {"BUY": "🟢", "SELL": "🔴", "HOLD": "⚪"}
ACTION_LABELS = {"BUY": "買い時", "SELL": "売り時", "HOLD": "様子見"}

NO_DATA_MESSAGE = "❌ 現在、分析データを取得できません。しばらく後にお試しください。"
RATE_LIMITED_MESSAGE = "⏰ 1時間に{limit}回までご利用いただけます。しばらく時間をおいてからお試しください。"
UNKNOWN_COMMAND_MESSAGE = "「シグナル」または「ヘルプ」と入力してください。"
ERROR_MESSAGE = "❌ 申し訳ございません。一時的なエラーが発生しました。しばらく後にお試しください。"


def _signals_of(analysis: Any):
    if isinstance(analysis, AnalysisResult):
        return [s.model_dump() for s in analysis.signals]
    if isinstance(analysis, Mapping):
        signals = analysis.get("signals")
        return signals if isinstance(signals, list) else None
    return None


def format_signals(analysis: Any, remaining_messages: int) -> str:
    """
    Render an analysis for chat.
    Missing or malformed input (no `signals` list) yields NO_DATA_MESSAGE.
    """
    signals = _signals_of(analysis)
    if signals is None:
        return NO_DATA_MESSAGE

    lines = [f"📊 {BRAND} シグナル", ""]
    for signal in signals:
        if not isinstance(signal, Mapping):
            continue
        action = str(signal.get("action", "HOLD")).upper()
        glyph = ACTION_GLYPHS.get(action, ACTION_GLYPHS["HOLD"])
        label = ACTION_LABELS.get(action, ACTION_LABELS["HOLD"])
        lines.append(f"{glyph} {signal.get('symbol', '?')}: {label}")
        lines.append(f"信頼度: {signal.get('confidence', 0)}%")
        lines.append(f"理由: {signal.get('reason', '')}")
        lines.append("")

    lines.append("⚠️ 投資判断は自己責任で")
    lines.append(f"📱 無料版：1日{remaining_messages}通残り")
    return "\n".join(lines)


def rate_limited_message(settings) -> str:
    return RATE_LIMITED_MESSAGE.format(limit=settings.max_user_requests_per_hour)


def help_message(settings) -> str:
    return (
        f"🤖 {BRAND} - 無料版\n"
        "\n"
        "📊 コマンド:\n"
        "• \"シグナル\" - 最新分析結果\n"
        "• \"ヘルプ\" - この画面\n"
        "\n"
        "🆓 無料版制限:\n"
        f"• 1日{settings.max_daily_model_calls}回AI分析\n"
        f"• 1日{settings.max_daily_messages}通LINE通知\n"
        f"• {len(settings.symbols)}銘柄監視\n"
        f"• {settings.cache_freshness_hours:g}時間キャッシュ\n"
        "\n"
        f"💡 データ更新: 平日{settings.cron_start_hour}:00-{settings.cron_end_hour}:00\n"
        "⚠️ 投資は自己責任でお願いします"
    )
